"""Database schema definitions for the tasklane tracker.

Contains the canonical SQL schema and the current schema version constant.
"""

from __future__ import annotations

SCHEMA_SQL = """\
CREATE TABLE IF NOT EXISTS projects (
    id          TEXT PRIMARY KEY,
    name        TEXT NOT NULL,
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS project_states (
    id          TEXT PRIMARY KEY,
    project_id  TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    name        TEXT NOT NULL,
    position    INTEGER NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_states_project ON project_states(project_id, position);

CREATE TABLE IF NOT EXISTS workflows (
    id          TEXT PRIMARY KEY,
    project_id  TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    name        TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_workflows_project ON workflows(project_id);

CREATE TABLE IF NOT EXISTS workflow_steps (
    workflow_id TEXT NOT NULL REFERENCES workflows(id) ON DELETE CASCADE,
    state_id    TEXT NOT NULL REFERENCES project_states(id) ON DELETE CASCADE,
    step_order  INTEGER NOT NULL,
    PRIMARY KEY (workflow_id, state_id)
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_steps_order ON workflow_steps(workflow_id, step_order);

-- Wildcard sources are an explicit flag, never a sentinel state id:
-- any_source = 1  <=>  from_state IS NULL.
CREATE TABLE IF NOT EXISTS workflow_transitions (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    workflow_id TEXT NOT NULL REFERENCES workflows(id) ON DELETE CASCADE,
    from_state  TEXT REFERENCES project_states(id) ON DELETE CASCADE,
    any_source  INTEGER NOT NULL DEFAULT 0,
    to_state    TEXT NOT NULL REFERENCES project_states(id) ON DELETE CASCADE,
    CHECK ((any_source = 1 AND from_state IS NULL) OR (any_source = 0 AND from_state IS NOT NULL))
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_transitions_specific
  ON workflow_transitions(workflow_id, from_state, to_state) WHERE any_source = 0;
CREATE UNIQUE INDEX IF NOT EXISTS idx_transitions_any
  ON workflow_transitions(workflow_id, to_state) WHERE any_source = 1;

CREATE TABLE IF NOT EXISTS task_types (
    id          TEXT PRIMARY KEY,
    project_id  TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    name        TEXT NOT NULL,
    workflow_id TEXT NOT NULL REFERENCES workflows(id) ON DELETE RESTRICT
);

CREATE INDEX IF NOT EXISTS idx_task_types_project ON task_types(project_id);

CREATE TABLE IF NOT EXISTS tasks (
    id            TEXT PRIMARY KEY,
    project_id    TEXT NOT NULL REFERENCES projects(id) ON DELETE CASCADE,
    name          TEXT NOT NULL,
    description   TEXT DEFAULT '',
    task_type_id  TEXT REFERENCES task_types(id),
    state_id      TEXT REFERENCES project_states(id),
    created_at    TEXT NOT NULL,
    updated_at    TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tasks_project ON tasks(project_id);
CREATE INDEX IF NOT EXISTS idx_tasks_state ON tasks(state_id);
CREATE INDEX IF NOT EXISTS idx_tasks_type ON tasks(task_type_id);

-- A state still referenced by a task cannot be deleted.
CREATE TRIGGER IF NOT EXISTS prevent_deleting_referenced_state
BEFORE DELETE ON project_states
FOR EACH ROW
WHEN EXISTS (SELECT 1 FROM tasks WHERE state_id = OLD.id)
BEGIN
    SELECT RAISE(ABORT, 'Cannot delete state that is referenced by a task');
END;

CREATE TABLE IF NOT EXISTS events (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    task_id    TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE,
    event_type TEXT NOT NULL,
    actor      TEXT DEFAULT '',
    old_value  TEXT,
    new_value  TEXT,
    comment    TEXT DEFAULT '',
    created_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_events_task ON events(task_id);
CREATE INDEX IF NOT EXISTS idx_events_task_time ON events(task_id, created_at DESC);
"""

CURRENT_SCHEMA_VERSION = 1
