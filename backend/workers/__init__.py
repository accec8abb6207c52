# Workers: separate processes that use DB as shared state.
# Run from backend/ with:
#   python -m workers.mirror_worker
