"""
The JavaScript sandbox seam used by the `jseval` transform.

No JavaScript engine ships with webq. Callers that want `jseval` pass an object
implementing `JsSandbox` to `QueryString`; each worker or thread should own its
own sandbox since the engine resets it at the start of every execution.
"""

from __future__ import annotations

from typing import Any, List, Optional, Protocol, runtime_checkable


@runtime_checkable
class JsSandbox(Protocol):
    def reset(self) -> None:
        """Drops all global state left by previous scripts."""
        ...

    def evaluate_and_extract(self, script: str, variable_names: Optional[List[str]] = None) -> Any:
        """Runs `script` and returns the named globals.

        With a single name the value itself is returned, with several a dict
        of name to value. Without names the sandbox picks what to return.
        """
        ...


class SandboxError(RuntimeError):
    pass


__all__ = ["JsSandbox", "SandboxError"]
