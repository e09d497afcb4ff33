# plant-keypoint-sync Core Module
"""
Application-level wiring for plant-keypoint-sync.

Contains:
- QConfig settings
- Logging setup
- Annotation session (store, sync engine, editor, direction controller)
"""
