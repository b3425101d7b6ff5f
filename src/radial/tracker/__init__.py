"""Goal/task lifecycle tracker backed by a per-project SQLite store.

Why not a JSON file per entity?
~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~~
Every ``rd`` command is a short-lived process and several agents may run
them against the same project at once.  Lifecycle transitions therefore have
to be compare-and-swap updates keyed on the expected prior state, and readers
must never observe a half-written record.  SQLite in WAL mode gives both for
free: a guarded ``UPDATE ... WHERE state = ?`` either applies or reports zero
rows, and readers always see the last committed snapshot.  A flat-file layout
would need its own lock file, temp-file + fsync + rename protocol and snapshot
reads to reach the same guarantees.
"""
