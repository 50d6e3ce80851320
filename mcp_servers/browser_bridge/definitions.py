"""Tool definitions: name, execution context and declared argument shape.

Argument models use camelCase wire names and reject unknown keys, so a typo in a
client request fails at the dispatch boundary instead of being silently ignored.
"""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .types import ExecutionContext, ToolHandlerDescriptor


class ToolArgs(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")


class NoArgs(ToolArgs):
    pass


class Coordinates(ToolArgs):
    x: float = Field(description="X coordinate relative to the viewport")
    y: float = Field(description="Y coordinate relative to the viewport")


class NavigateArgs(ToolArgs):
    url: str | None = Field(default=None, description="URL to navigate to")
    new_window: bool = Field(default=False, description="Open the URL in a new window")
    width: int | None = Field(default=None, gt=0, description="Viewport width in pixels (default: 1280)")
    height: int | None = Field(default=None, gt=0, description="Viewport height in pixels (default: 720)")
    refresh: bool = Field(default=False, description="Reload the active tab instead of navigating; url is ignored")


class ScreenshotArgs(ToolArgs):
    name: str | None = Field(default=None, description="Name for the screenshot, if saving as PNG")
    selector: str | None = Field(default=None, description="CSS selector for element to screenshot")
    width: int | None = Field(default=None, gt=0, description="Width in pixels (default: 800)")
    height: int | None = Field(default=None, gt=0, description="Height in pixels (default: 600)")
    store_base64: bool = Field(default=False, description="Return the screenshot as base64 image content")
    full_page: bool = Field(default=True, description="Capture the entire page")
    save_png: bool = Field(default=True, description="Save the screenshot as a PNG download")


class CloseTabsArgs(ToolArgs):
    tab_ids: list[int] | None = Field(default=None, description="Tab ids to close (default: active tab)")
    url: str | None = Field(default=None, description="Close tabs matching this URL")


class GoBackOrForwardArgs(ToolArgs):
    is_forward: bool = Field(default=False, description="Go forward if true, back if false")


class WebContentArgs(ToolArgs):
    url: str | None = Field(default=None, description="URL to fetch content from (default: active tab)")
    html_content: bool = Field(default=False, description="Return visible HTML; textContent is ignored when set")
    text_content: bool = Field(default=True, description="Return visible text with metadata")
    selector: str | None = Field(default=None, description="Limit content to this CSS selector")


class ClickArgs(ToolArgs):
    selector: str | None = Field(default=None, description="CSS selector of the element to click")
    coordinates: Coordinates | None = Field(default=None, description="Viewport coordinates; wins over selector")
    wait_for_navigation: bool = Field(default=False, description="Wait for navigation to finish after the click")
    timeout: int | None = Field(default=None, gt=0, description="Element/navigation wait in ms (default: 5000)")


class FillArgs(ToolArgs):
    selector: str = Field(description="CSS selector for the input element to fill or select")
    value: str = Field(description="Value to fill or select into the element")


class InteractiveElementsArgs(ToolArgs):
    text_query: str | None = Field(default=None, description="Fuzzy text to search for within elements")
    selector: str | None = Field(default=None, description="CSS selector filter; wins over textQuery")
    include_coordinates: bool = Field(default=True, description="Include element coordinates")


class NetworkRequestArgs(ToolArgs):
    url: str = Field(description="URL to send the request to")
    method: str = Field(default="GET", description="HTTP method")
    headers: dict[str, str] | None = Field(default=None, description="Request headers")
    body: str | None = Field(default=None, description="Request body")
    timeout: int | None = Field(default=None, gt=0, description="Timeout in ms (default: 30000)")


class CaptureStartArgs(ToolArgs):
    url: str | None = Field(default=None, description="URL to capture from (default: active tab)")


class KeyboardArgs(ToolArgs):
    keys: str = Field(description='Keys to simulate, e.g. "Enter", "Ctrl+C", "A,B,C"')
    selector: str | None = Field(default=None, description="Target element (default: active element)")
    delay: int = Field(default=0, ge=0, description="Delay between key sequences in ms")


class HistoryArgs(ToolArgs):
    text: str | None = Field(default=None, description="Text to match in history URLs and titles")
    start_time: str | None = Field(default=None, description='ISO date, relative ("1 day ago") or keyword')
    end_time: str | None = Field(default=None, description='ISO date, relative ("1 day ago") or keyword')
    max_results: int = Field(default=100, gt=0, description="Maximum number of entries")
    exclude_current_tabs: bool = Field(default=False, description="Skip URLs currently open in a tab")


class BookmarkSearchArgs(ToolArgs):
    query: str | None = Field(default=None, description="Text to match in bookmark titles and URLs")
    max_results: int = Field(default=50, gt=0, description="Maximum number of bookmarks")
    folder_path: str | None = Field(default=None, description='Folder path ("Work/Projects") or folder id')


class BookmarkAddArgs(ToolArgs):
    url: str | None = Field(default=None, description="URL to bookmark (default: active tab)")
    title: str | None = Field(default=None, description="Bookmark title (default: page title)")
    parent_id: str | None = Field(default=None, description="Parent folder path or id (default: Bookmarks Bar)")
    create_folder: bool = Field(default=False, description="Create the parent folder if missing")


class BookmarkDeleteArgs(ToolArgs):
    bookmark_id: str | None = Field(default=None, description="Bookmark id; either this or url is required")
    url: str | None = Field(default=None, description="Bookmark URL, used when bookmarkId is absent")
    title: str | None = Field(default=None, description="Title to disambiguate URL matches")


class SearchTabsContentArgs(ToolArgs):
    query: str = Field(min_length=1, description="Query to search for in open tabs")


class InjectScriptArgs(ToolArgs):
    url: str | None = Field(default=None, description="Inject into the tab with this URL (default: active tab)")
    type: Literal["ISOLATED", "MAIN"] = Field(description="JavaScript world to execute in")
    js_script: str = Field(description="Content script source")


class SendCommandToInjectScriptArgs(ToolArgs):
    tab_id: int | None = Field(default=None, description="Tab that holds the injected script (default: active)")
    event_name: str = Field(description="Event name the injected script listens for")
    payload: str | None = Field(default=None, description="JSON string passed to the event")


class ConsoleArgs(ToolArgs):
    url: str | None = Field(default=None, description="URL to capture console from (default: active tab)")
    include_exceptions: bool = Field(default=True, description="Include uncaught exceptions")
    max_messages: int = Field(default=100, gt=0, description="Maximum number of console messages")


BG = ExecutionContext.BACKGROUND
CS = ExecutionContext.CONTENT_SCRIPT
OFF = ExecutionContext.OFFSCREEN

TOOL_DESCRIPTORS: tuple[ToolHandlerDescriptor, ...] = (
    ToolHandlerDescriptor("get_windows_and_tabs", BG, NoArgs, "List open browser windows and tabs"),
    ToolHandlerDescriptor("navigate", BG, NavigateArgs, "Navigate to a URL or refresh the current tab"),
    ToolHandlerDescriptor("close_tabs", BG, CloseTabsArgs, "Close one or more browser tabs"),
    ToolHandlerDescriptor("go_back_or_forward", BG, GoBackOrForwardArgs, "Navigate back or forward in history"),
    ToolHandlerDescriptor("screenshot", CS, ScreenshotArgs, "Screenshot the page or a specific element"),
    ToolHandlerDescriptor("get_web_content", CS, WebContentArgs, "Fetch text or HTML content from a page"),
    ToolHandlerDescriptor(
        "get_interactive_elements", CS, InteractiveElementsArgs, "List interactive elements on the page"
    ),
    ToolHandlerDescriptor("click_element", CS, ClickArgs, "Click an element or viewport coordinates"),
    ToolHandlerDescriptor("fill_or_select", CS, FillArgs, "Fill a form field or select an option"),
    ToolHandlerDescriptor("keyboard", CS, KeyboardArgs, "Simulate keyboard events"),
    ToolHandlerDescriptor("network_request", CS, NetworkRequestArgs, "Send a request with the browser's cookies"),
    ToolHandlerDescriptor("network_capture_start", BG, CaptureStartArgs, "Start capturing requests (webRequest)"),
    ToolHandlerDescriptor("network_capture_stop", BG, NoArgs, "Stop webRequest capture and return requests"),
    ToolHandlerDescriptor(
        "network_debugger_start", BG, CaptureStartArgs, "Start capturing requests with bodies (debugger)"
    ),
    ToolHandlerDescriptor("network_debugger_stop", BG, NoArgs, "Stop debugger capture and return requests"),
    ToolHandlerDescriptor("history", BG, HistoryArgs, "Search browsing history"),
    ToolHandlerDescriptor("bookmark_search", BG, BookmarkSearchArgs, "Search bookmarks by title and URL"),
    ToolHandlerDescriptor("bookmark_add", BG, BookmarkAddArgs, "Add a bookmark"),
    ToolHandlerDescriptor("bookmark_delete", BG, BookmarkDeleteArgs, "Delete a bookmark"),
    ToolHandlerDescriptor(
        "search_tabs_content", OFF, SearchTabsContentArgs, "Semantic search over the content of open tabs"
    ),
    ToolHandlerDescriptor("inject_script", BG, InjectScriptArgs, "Inject a content script into a page"),
    ToolHandlerDescriptor(
        "send_command_to_inject_script",
        BG,
        SendCommandToInjectScriptArgs,
        "Fire a custom event at a previously injected script",
    ),
    ToolHandlerDescriptor("console", BG, ConsoleArgs, "Capture console output from a tab"),
)
