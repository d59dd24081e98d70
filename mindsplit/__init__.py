"""
Split short notes into independent workstreams by minimum graph cut.

Modules:
- chunking: Chunk dataclass and text segmentation
- embeddings: Embedding providers (SiliconFlow, local ST, offline hashing)
- graph: Cosine-similarity graph over chunks
- mincut: Stoer-Wagner bisection and Karger cross-check
- analysis: Workstream naming (c-TF-IDF)
- config: Environment-driven settings
- errors: Exception hierarchy
- utils: Small shared utilities
- core: Embedding cache, session store and orchestrator
"""

__all__ = [
    "chunking",
    "embeddings",
    "graph",
    "mincut",
    "analysis",
    "config",
    "errors",
    "utils",
    "core",
]
