"""Script resources seen in the inspected page."""

from typing import Any, Awaitable, Callable, Dict, Optional, Tuple


SCRIPT_KIND = "script"
WASM_KIND = "wasm"

# Async accessor returning (content, transport_encoding); encoding is None or "base64"
ContentAccessor = Callable[[], Awaitable[Tuple[Optional[str], Optional[str]]]]


class ResourceDescriptor:
    """A script loaded into the inspected page.

    Validated once here so the pipeline can trust optional fields:
    ``native_build_id`` is either a non-empty string or None.
    """

    def __init__(self, url: str, kind: str, get_content: ContentAccessor,
                 native_build_id: Optional[str] = None):
        if not url:
            raise ValueError("resource url must not be empty")
        if not callable(get_content):
            raise TypeError("get_content must be callable")

        self.url = url
        self.kind = kind
        self.get_content = get_content
        self.native_build_id = native_build_id if isinstance(native_build_id, str) and native_build_id else None

    @property
    def is_script(self) -> bool:
        return self.kind == SCRIPT_KIND

    @classmethod
    def from_script_parsed(cls, params: Dict[str, Any], connector,
                           session_id: Optional[str]) -> Optional["ResourceDescriptor"]:
        """Build a descriptor from a Debugger.scriptParsed event."""
        script_id = params.get("scriptId")
        url = params.get("url")
        if not script_id or not url:
            return None

        kind = WASM_KIND if params.get("scriptLanguage") == "WebAssembly" else SCRIPT_KIND

        async def get_content() -> Tuple[Optional[str], Optional[str]]:
            response = await connector.call(
                "Debugger.getScriptSource",
                {"scriptId": script_id},
                session_id=session_id
            )
            # Only WebAssembly modules come back as bytecode; handle_resource
            # skips WASM_KIND before reading content
            if response.get("bytecode"):
                return response["bytecode"], "base64"
            return response.get("scriptSource"), None

        return cls(url, kind, get_content, native_build_id=params.get("buildId"))

    def __repr__(self) -> str:
        return f"ResourceDescriptor(url={self.url!r}, kind={self.kind!r})"
