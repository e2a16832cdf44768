"""
Stagecue — Stream Event → Avatar Effect Scheduler
==================================================
Reacts to stream events (chat messages, whispers, bit donations,
channel-point redemptions, Streamlabs donations) by applying time-bounded
effects: switching the VRChat avatar, setting OSC parameters, toggling
overlays.  Effects never collide on the same slot, restore what they
displaced, and are cleaned up when they expire or are force-cancelled.

Package layout::

    stagecue/
    ├── config.py          # YAML → typed Python config
    ├── runtime.py         # Composition root: wires engine + services
    ├── database/
    │   ├── engine.py      # SQLAlchemy engine + async helper
    │   ├── models.py      # Task and overlay tables, kind enums
    │   └── seed.py        # Default task seeder
    ├── engine/
    │   ├── events.py      # Event dataclasses + payload parsing
    │   ├── context.py     # RewardContext, TaskContext, Task
    │   ├── surface.py     # Effect surface, live state, catalogue
    │   ├── triggers.py    # Trigger variants + handler registry
    │   ├── rewards.py     # Reward variants + lifecycle
    │   └── handler.py     # RewardHandler (queue draining scheduler)
    ├── services/
    │   ├── task_service.py   # Task persistence (fail-closed loading)
    │   ├── osc_service.py    # OSC codec, UDP surface + listener
    │   ├── avatar_service.py # VRChat avatar catalogue scan
    │   └── event_log.py      # Recent-event ring buffer
    └── api/
        ├── main.py        # FastAPI app
        └── routes/        # Ingestion + diagnostics endpoints
"""

__version__ = "0.1.0"
