from __future__ import annotations

import json
from abc import ABC, abstractmethod
from typing import Any, Callable, Dict

from groupflow.schemas.messages import FunctionContract


class Tool(ABC):
    """Protocol describing a callable capability an agent may request."""

    name: str

    def __init__(
        self,
        name: str,
        description: str = "",
        parameters: Dict[str, Any] | None = None,
    ) -> None:
        self.name = name
        self.description = description
        self.parameters: Dict[str, Any] = dict(parameters or {})

    @abstractmethod
    def run(self, arguments: Dict[str, Any]) -> str:
        """Execute tool logic and return its result as text."""

    def contract(self) -> FunctionContract:
        return FunctionContract(
            name=self.name,
            description=self.description,
            parameters=self.parameters,
        )

    def invoke(self, arguments_json: str) -> str:
        arguments = json.loads(arguments_json) if arguments_json.strip() else {}
        if not isinstance(arguments, dict):
            raise ValueError(f"arguments for {self.name} must be a JSON object")
        return self.run(arguments)


class FunctionTool(Tool):
    """Wraps a plain function; keyword arguments come from the call's JSON object."""

    def __init__(
        self,
        func: Callable[..., Any],
        name: str | None = None,
        description: str | None = None,
        parameters: Dict[str, Any] | None = None,
    ) -> None:
        super().__init__(
            name=name or func.__name__,
            description=description if description is not None else (func.__doc__ or "").strip(),
            parameters=parameters,
        )
        self._func = func

    def run(self, arguments: Dict[str, Any]) -> str:
        return str(self._func(**arguments))
