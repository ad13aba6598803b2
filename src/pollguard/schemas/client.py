"""
Client-side signals sent with every vote attempt.

The browser collects these values; the server treats them as untrusted
input and never reads any ambient global state.
"""

from typing import Optional

from pydantic import BaseModel, Field


class ClientEnvironment(BaseModel):
    """Browser and device characteristics used for fingerprinting."""

    user_agent: str = ""
    language: str = ""
    screen_width: int = Field(0, ge=0)
    screen_height: int = Field(0, ge=0)
    timezone_offset: int = 0  # Minutes from UTC, as reported by the browser
    platform: str = ""

    # Data URI of the client's off-screen canvas render; absent without canvas support
    canvas_data: Optional[str] = None

    @property
    def screen_resolution(self) -> str:
        return f"{self.screen_width}x{self.screen_height}"


class InteractionSignals(BaseModel):
    """
    Interaction instrumentation read by the bot detector.

    Counts are ``None`` when the client had no buffer for that event kind.
    """

    mouse_move_count: Optional[int] = Field(None, ge=0)
    key_press_count: Optional[int] = Field(None, ge=0)

    # Automation markers found on window/navigator
    webdriver: bool = False
    headless: bool = False
    automation_markers: list[str] = Field(default_factory=list)

    # Page load to first interaction
    time_to_interaction_ms: Optional[int] = Field(None, ge=0)

    # Device capabilities
    has_touch_events: bool = False
    max_touch_points: int = Field(0, ge=0)
