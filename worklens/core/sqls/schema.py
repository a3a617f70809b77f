"""
Database schema definitions
Contains all CREATE TABLE and CREATE INDEX statements
"""

# Table creation statements
CREATE_TASK_CLUSTERS_TABLE = """
    CREATE TABLE IF NOT EXISTS task_clusters (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        description TEXT NOT NULL DEFAULT '',
        start_time TEXT NOT NULL,
        end_time TEXT NOT NULL,
        duration_minutes INTEGER NOT NULL,
        status TEXT NOT NULL DEFAULT 'completed',
        source_apps TEXT,
        keywords TEXT,
        productivity TEXT,
        confidence REAL,
        linked_goal_id INTEGER,
        created_at TEXT NOT NULL,
        FOREIGN KEY (linked_goal_id) REFERENCES user_goals(id) ON DELETE SET NULL
    )
"""

CREATE_SUBTASKS_TABLE = """
    CREATE TABLE IF NOT EXISTS subtasks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        name TEXT NOT NULL,
        summary TEXT NOT NULL DEFAULT '',
        member_task_ids TEXT NOT NULL,
        update_count INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
"""

CREATE_MAJOR_TASKS_TABLE = """
    CREATE TABLE IF NOT EXISTS major_tasks (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        title TEXT NOT NULL,
        summary_bullets TEXT NOT NULL,
        member_subtask_ids TEXT NOT NULL,
        archived BOOLEAN NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
"""

CREATE_USER_GOALS_TABLE = """
    CREATE TABLE IF NOT EXISTS user_goals (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id TEXT NOT NULL,
        name TEXT NOT NULL,
        target_minutes INTEGER NOT NULL,
        status TEXT NOT NULL DEFAULT 'pending',
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
"""

CREATE_EMBEDDINGS_TABLE = """
    CREATE TABLE IF NOT EXISTS unit_embeddings (
        user_id TEXT NOT NULL,
        kind TEXT NOT NULL,
        source_id INTEGER NOT NULL,
        vector TEXT NOT NULL,
        content TEXT NOT NULL,
        metadata TEXT,
        updated_at TEXT NOT NULL,
        PRIMARY KEY (user_id, kind, source_id)
    )
"""

# Index creation statements
CREATE_TASK_CLUSTERS_USER_CREATED_INDEX = """
    CREATE INDEX IF NOT EXISTS idx_task_clusters_user_created
    ON task_clusters(user_id, created_at)
"""

CREATE_TASK_CLUSTERS_GOAL_INDEX = """
    CREATE INDEX IF NOT EXISTS idx_task_clusters_goal
    ON task_clusters(linked_goal_id)
"""

CREATE_SUBTASKS_USER_CREATED_INDEX = """
    CREATE INDEX IF NOT EXISTS idx_subtasks_user_created
    ON subtasks(user_id, created_at)
"""

CREATE_MAJOR_TASKS_USER_ARCHIVED_INDEX = """
    CREATE INDEX IF NOT EXISTS idx_major_tasks_user_archived
    ON major_tasks(user_id, archived)
"""

CREATE_USER_GOALS_USER_INDEX = """
    CREATE INDEX IF NOT EXISTS idx_user_goals_user
    ON user_goals(user_id, status)
"""

CREATE_EMBEDDINGS_KIND_INDEX = """
    CREATE INDEX IF NOT EXISTS idx_unit_embeddings_user_kind
    ON unit_embeddings(user_id, kind)
"""

# Dead letters (added by migration 0002)
CREATE_DEAD_LETTERS_TABLE = """
    CREATE TABLE IF NOT EXISTS dead_letters (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        job_name TEXT NOT NULL,
        user_id TEXT,
        error TEXT NOT NULL,
        attempts INTEGER NOT NULL,
        payload TEXT,
        created_at TEXT NOT NULL
    )
"""

CREATE_DEAD_LETTERS_CREATED_INDEX = """
    CREATE INDEX IF NOT EXISTS idx_dead_letters_created
    ON dead_letters(created_at)
"""

ALL_TABLES = [
    CREATE_USER_GOALS_TABLE,
    CREATE_TASK_CLUSTERS_TABLE,
    CREATE_SUBTASKS_TABLE,
    CREATE_MAJOR_TASKS_TABLE,
    CREATE_EMBEDDINGS_TABLE,
]

ALL_INDEXES = [
    CREATE_TASK_CLUSTERS_USER_CREATED_INDEX,
    CREATE_TASK_CLUSTERS_GOAL_INDEX,
    CREATE_SUBTASKS_USER_CREATED_INDEX,
    CREATE_MAJOR_TASKS_USER_ARCHIVED_INDEX,
    CREATE_USER_GOALS_USER_INDEX,
    CREATE_EMBEDDINGS_KIND_INDEX,
]
