"""Workflow guide printed by ``rd prep`` for agents picking up a project."""

from __future__ import annotations

PREP_GUIDE = """\
## rd preparation

rd tracks goals and tasks with dependencies so agents can pick up whatever is
ready. State lives in a local SQLite store under `.radial/`.

### Setup

    rd init                          # create .radial/ in the current directory
    rd init --stealth                # keep .radial/ out of git
    rd init --redirect ../main/.radial   # share another checkout's store

### Goals

    rd goal create "Implement user authentication"
    rd goal list [--json]

### Tasks

    rd task create <goal_id> "Parse config" \\
        --receives "config.yaml path" \\
        --produces "Config object" \\
        --verify "unit tests pass" \\
        --blocked-by <task_a>,<task_b>
    rd task list <goal_id> [--json]          # dependency order

### Lifecycle

    rd task start <task_id>
    rd task complete <task_id> --result "Added login endpoint" \\
        [--artifacts src/auth.py,src/jwt.py] [--tokens 1500] [--elapsed 30000]
    rd task fail <task_id>
    rd task retry <task_id>
    rd task delete <task_id>
    rd task comment <task_id> "Found the issue"

### Editing

    rd edit goal <goal_id> --description "..."
    rd edit task <task_id> [--description ...] [--receives ...] [--produces ...]
                           [--verify ...] [--blocked-by a,b]

### Viewing

    rd list [--json]                 # every goal with its tasks
    rd status [--goal ID | --task ID] [--json]
    rd show <id> [--json]            # goal or task, detected automatically
    rd ready <goal_id> [--json]      # pending tasks with a contract
    rd reconcile <goal_id>           # re-run unblocking and goal rollup
    rd clean [--force] [--yes]       # remove completed (or all) goals

### Rules

- A contract (--receives/--produces/--verify) is required before a task can start.
- Tasks created with --blocked-by start `blocked` and become `pending` once
  every blocker is `completed`.
- Only `pending` tasks can be started or deleted.
- Only `in_progress` tasks can be completed.
- Only `in_progress` or `verifying` tasks can be failed.
- Only `failed` tasks can be retried.
- Exit status 5 means another process changed the task first: re-read and retry.

### Typical workflow

1. `rd goal create "Build feature X"` -> goal_id
2. `rd task create <goal_id> "Task A" ...` for each step, with dependencies
3. `rd ready <goal_id>` -> what can start now
4. `rd task start <task_id>` -> claim it
5. `rd task complete <task_id> --result "..."` -> finish it
6. Repeat from step 3
"""
