"""GitHub sync: bi-directional, last-write-wins merge of notes and tasks.

Remote layout (one branch of one repository):
    <repo>/
    ├── .jarvis-sync.json              # per-entity watermark (metadata.py)
    ├── notes/
    │   └── 2024-02/<id>.md            # frontmatter + "# title" + body
    └── tasks/
        └── 2024-02/<id>.json          # pretty-printed task

Dependency order: github (client) -> codec -> metadata -> engine -> service.
Only the engine decides what happens to an entity.
"""
