"""Taskflow board: records, storage, ordering, history, sync and the per-actor workspace."""
