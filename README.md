# kronos

A local, persistent memory store for coding agents. Kronos keeps
*observations* (decisions, bug fixes, discoveries, patterns), *sessions*,
user *prompts* and *relations* between observations in a SQLite database
with FTS5 full-text search. It uses only the standard library; the Python
`sqlite3` module must be built with FTS5 support.

## Features

- **Observations** (`kronos.store.Store.save_observation`) with automatic
  deduplication and upserts:
  - saving with a `topic_key` that already exists in the same project
    updates that record and increments its revision count;
  - saving the same title and content again (compared case-insensitively,
    ignoring surrounding whitespace) increments the duplicate count instead
    of creating a new row;
  - deletions are soft: records keep a `deleted_at` timestamp and still come
    back from `get_observation`, but not from listings or searches.
- **Full-text search** (`search`) ranked by BM25, limited to a project plus
  observations with global scope. Plain multi-word queries are searched as a
  phrase; queries with FTS5 operators are passed through as written.
- **Sessions** with summaries, a per-session search counter
  (`increment_search_count`) and the list of observation ids already
  injected into the agent's context (`persist_injected_ids`,
  `load_injected_ids`).
- **Maintenance**: `gc_stale` soft-deletes observations never revised or
  seen again within a retention period (90 days by default),
  `touch_last_seen` keeps observations alive, `rename_project` moves
  observations between projects, `list_recent` and `timeline_observations`
  give recent and surrounding observations, and `stats` returns a `Stats`
  summary of counts and project names.
- **Learning extraction** from sub-agent output: `kronos.prompts.extract_learnings`
  picks the list items under a `## Key Learnings:` (or `### Aprendizajes Clave:`)
  heading, keeping items of at least 20 bytes and 4 words, without duplicates.
  `save_passive` stores such text as a passive observation.
- **Relations** between observations (`related`, `compatible`, `scoped`,
  `conflicts_with`, `supersedes`, `not_conflict`): `find_candidates` records
  pending relations to observations with overlapping titles, `judge_relation`
  and `judge_by_semantic` record verdicts, `list_relations` and
  `get_relation_stats` report on them, and `gc_relations` soft-deletes dangling
  relations and pending ones older than 30 days.
- **Dual store** (`kronos.dual_store.DualStore`): a primary backend with a
  local SQLite buffer. While the primary is unreachable, reads and writes go
  to the buffer and writes are also queued (`kronos.sync_queue.SyncQueue`).
  A background thread retries on a staged schedule (3×60 s, 3×5 min,
  3×10 min, 3×20 min, 3×30 min, then every 60 min) and replays the queue in
  order; `flush_pending` and `flush_pending_verbose` do the same on demand,
  and `pending_count` reports what is still waiting.
- **Agent setup helpers** that register Kronos hooks, tool permissions and
  its MCP server entry in Claude Code, Cursor and Windsurf configuration files.

## Usage

```python
from kronos.models import ObservationType, SaveParams, SearchParams
from kronos.store import Store

with Store("memory.db") as store:
    store.create_session("s1", "my-project", "/work/my-project")

    obs = store.save_observation(SaveParams(
        type=ObservationType.DECISION,
        title="Chose SQLite",
        content="SQLite is embedded and needs no server.",
        project="my-project",
        session_id="s1",
    ))

    for result in store.search(SearchParams(query="sqlite", project="my-project", limit=10)):
        print(result.id, result.title, result.rank)

    store.end_session("s1", "Picked the storage backend.")
```

Extracting learnings from an agent's report:

```python
from kronos.prompts import extract_learnings

report = """## Key Learnings:
1. FTS5 with an external content table needs triggers to stay in sync
2. bm25() returns negative scores, so ascending order puts the best match first
"""
print(extract_learnings(report))
```

Using a dual store, with any object that offers the `kronos.store.Storer`
operations as the primary:

```python
from kronos.dual_store import DualStore
from kronos.store import Store

dual = DualStore(Store("buffer.db"), lambda: Store("primary.db"))
try:
    dual.create_session("s1", "my-project")
    print(dual.pending_count())
finally:
    dual.close()
```

`connect_primary` is called at start-up and again on each reconnect attempt;
if it raises, the store starts in buffered mode.

## Registering with agents

```python
from pathlib import Path

from kronos.claude_setup import install_claude_code, uninstall
from kronos.mcp_setup import install_cursor, install_windsurf

home = Path.home()
install_claude_code(home / ".claude", home / ".claude.json")
install_cursor(home)
install_windsurf(home)
```

`install_claude_code` adds the hooks, the MCP server entry and the `mem_*`
tool permissions to `settings.json`, points `mcpServers.kronos` in the user
config file at the current `kronos` executable, removes hooks that run old
`node … kronos….js` scripts and rewrites absolute-path Kronos hook commands
to their short form. It returns `True` when something changed. Other hooks
and settings are kept; files are rewritten with sorted keys.
`install_cursor` and `install_windsurf` return `False` when Kronos is already
registered. `uninstall` removes the Kronos hooks from Claude Code's
`settings.json`; `uninstall_cursor` and `uninstall_windsurf` remove the
server entry from the editors' config files.

## What this package does not do

- It has no command-line program and no MCP server. The hook commands
  (`kronos hook …`) and the server command (`kronos serve`) written into
  agent configuration files must be provided by a separately installed
  `kronos` executable.
- The only built-in backend is SQLite. `DualStore` needs the caller to supply
  the primary backend.

## Errors

Validation failures and missing records raise `kronos.database.StoreError`.
Invalid relation verbs raise `kronos.relations.InvalidRelationError`.
Judging a relation between observations of different projects raises
`kronos.relations.CrossProjectRelationError`. The setup helpers raise
`ValueError` when an existing configuration file is not a JSON object.