"""Upload store: bind uploaded files to the records that own them.

Modules:
    - files: attachment store (stage / commit / discard / delete)
    - binding: record lifecycle hooks on top of the store
    - config: YAML settings loaded into pydantic models
    - logging_setup: root logger configuration
    - main: init_app() startup hook
"""

__version__ = "0.1.0"
