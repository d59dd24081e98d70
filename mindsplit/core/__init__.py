"""
Stateful services for the split pipeline.

Modules:
- cache: Content-addressed sqlite embedding cache
- sessions: Session persistence with per-session writers
- orchestrator: split / add_and_resplit / bleeding report
"""
