"""Textual-based UI for cd-player."""

from __future__ import annotations

from typing import Any, Optional

from textual import events
from textual.app import App, ComposeResult
from textual.binding import Binding
from textual.containers import Horizontal, Vertical
from textual.screen import ModalScreen
from textual.widgets import Footer, Header, Input, Static
from rich.markup import escape as rich_escape

from .colima import ColimaManager
from .config import UIConfig
from .docker_manager import DockerManager
from .model import ColimaInstance, ColimaStatus, ContainerStatus, DockerContainer, UnavailableReason
from .shell import LogStream

SORT_MODES = ["name", "uptime"]

_INSTANCE_ICONS = {
    ColimaStatus.RUNNING: "●",
    ColimaStatus.STARTING: "◐",
    ColimaStatus.STOPPING: "◐",
}


def sort_containers(containers: list[DockerContainer], mode: str) -> list[DockerContainer]:
    if mode == "uptime":
        return sorted(containers, key=lambda c: (c.sortable_seconds, c.name.casefold()))
    return sorted(containers, key=lambda c: c.name.casefold())


def instance_row(instance: ColimaInstance) -> str:
    icon = _INSTANCE_ICONS.get(instance.status, "○")
    hints = ", ".join(instance.status_lines[1:])
    return f"{icon} {instance.name[:20]:20} {instance.status.value:12} {hints}".rstrip()


def container_row(container: DockerContainer, pinned: bool, pending: bool) -> str:
    pin = "*" if pinned else " "
    status = "..." if pending else container.short_status
    return (
        f"{pin}{container.status.icon} {container.display_label[:24]:24} "
        f"{status[:22]:22} {container.short_ports_display[:16]:16} {container.image[:30]}"
    )


def docker_banner(docker: DockerManager) -> Optional[str]:
    """Message replacing the container list when docker cannot be reached."""
    if docker.is_available or docker.containers:
        return None
    reason = docker.unavailable_reason
    if reason is UnavailableReason.PERMISSION_DENIED:
        return "Docker: Permission Denied (press D for diagnostics)"
    if reason in (UnavailableReason.DAEMON_NOT_RUNNING, UnavailableReason.SOCKET_NOT_FOUND):
        return "Docker Unavailable (Colima Not Running)"
    return "Docker Unavailable"


class ConfirmScreen(ModalScreen[bool]):
    def __init__(self, question: str) -> None:
        super().__init__()
        self.question = question

    def compose(self) -> ComposeResult:
        yield Vertical(
            Static("Confirm", classes="modal_title"),
            Static(self.question, classes="modal_body"),
            Static("[Enter/Y] Yes    [Esc/N] No", classes="modal_hint"),
            id="modal",
        )

    async def on_key(self, event: events.Key) -> None:
        if event.key in ("enter", "y", "Y"):
            self.dismiss(True)
        elif event.key in ("escape", "n", "N"):
            self.dismiss(False)


class MessageScreen(ModalScreen[None]):
    def __init__(self, title: str, body: str) -> None:
        super().__init__()
        self.title_text = title
        self.body = body

    def compose(self) -> ComposeResult:
        yield Vertical(
            Static(self.title_text, classes="modal_title", markup=False),
            Static(self.body, classes="modal_body", markup=False),
            Static("[Enter/Esc] Close", classes="modal_hint"),
            id="modal",
        )

    async def on_key(self, event: events.Key) -> None:
        if event.key in ("enter", "escape"):
            self.dismiss(None)


class InputScreen(ModalScreen[Optional[str]]):
    """Prompt for a value; Enter on an empty field returns "", Esc returns None."""

    def __init__(self, prompt: str, value: str = "") -> None:
        super().__init__()
        self.prompt = prompt
        self.value = value

    def compose(self) -> ComposeResult:
        yield Vertical(
            Static("Input", classes="modal_title"),
            Static(self.prompt, classes="modal_body"),
            Input(value=self.value, placeholder="Type value and press Enter", id="input_value"),
            Static("[Esc] Cancel", classes="modal_hint"),
            id="modal",
        )

    def on_mount(self) -> None:
        self.query_one("#input_value", Input).focus()

    async def on_input_submitted(self, event: Input.Submitted) -> None:
        self.dismiss(event.value.strip())

    async def on_key(self, event: events.Key) -> None:
        if event.key == "escape":
            self.dismiss(None)


class CDPlayerApp(App[None]):
    TITLE = "cd-player"
    SUB_TITLE = "Colima & Docker"

    CSS = """
    Screen {
      layout: vertical;
    }

    #instances {
      height: auto;
      max-height: 12;
      border: round $accent;
      padding: 0 1;
    }

    #top {
      height: 1fr;
    }

    #containers {
      width: 62%;
      height: 1fr;
      border: round $accent;
      padding: 0 1;
      overflow: auto;
    }

    #info {
      width: 38%;
      height: 1fr;
      border: round $accent;
      padding: 0 1;
      overflow: auto;
    }

    #logs {
      height: 1fr;
      border: round $accent;
      padding: 0 1;
      overflow: auto;
    }

    Screen.no-logs #logs {
      display: none;
    }

    #status {
      height: 1;
      padding: 0 1;
      background: $panel;
      color: $text;
    }

    #modal {
      width: 80;
      height: auto;
      border: round $accent;
      background: $surface;
      padding: 1 2;
      align: center middle;
    }

    .modal_title {
      text-style: bold;
      margin-bottom: 1;
    }

    .modal_body {
      margin-bottom: 1;
    }

    .modal_hint {
      color: $text-muted;
    }
    """

    BINDINGS = [
        Binding("q", "quit", "Quit"),
        Binding("tab", "switch_pane", "Pane"),
        Binding("up", "up", "Up", show=False),
        Binding("down", "down", "Down", show=False),
        Binding("s", "start", "Start"),
        Binding("t", "stop", "Stop"),
        Binding("z", "pause", "Pause/Unpause"),
        Binding("p", "toggle_pin", "Pin"),
        Binding("a", "toggle_all", "All/Pinned"),
        Binding("l", "toggle_logs", "Logs"),
        Binding("i", "inspect", "Inspect"),
        Binding("x", "shell", "Shell"),
        Binding("S", "cycle_sort", "Sort"),
        Binding("u", "set_user", "User"),
        Binding("D", "diagnostics", "Diagnostics"),
        Binding("F", "toggle_auto_fix", "Auto-fix", show=False),
        Binding("r", "refresh", "Refresh"),
    ]

    PANES = ["instances", "containers"]

    def __init__(self, colima: ColimaManager, docker: DockerManager,
                 ui_config: Optional[UIConfig] = None) -> None:
        super().__init__()
        self.colima = colima
        self.docker = docker
        self.ui_config = ui_config or UIConfig()
        self.focused_pane = "instances"
        self.selected = {"instances": 0, "containers": 0}
        self.show_all = False
        self.sort_mode = "name"
        self.message = ""
        self.log_stream: Optional[LogStream] = None
        self.log_container: Optional[str] = None
        self.logs: list[str] = []
        self._unsubscribe: list[Any] = []

    def compose(self) -> ComposeResult:
        yield Header(show_clock=True)
        yield Static("", id="instances", markup=False)
        yield Vertical(
            Horizontal(
                Static("", id="containers", markup=False),
                Static("", id="info", markup=False),
                id="top",
            ),
            Static("", id="logs", markup=False),
            id="main",
        )
        yield Static("", id="status", markup=False)
        yield Footer()

    def on_mount(self) -> None:
        self._unsubscribe = [
            self.colima.changes.subscribe(self._render),
            self.docker.changes.subscribe(self._render),
        ]
        self.colima.start_polling()
        self.docker.start_polling()
        self.set_class(True, "no-logs")
        self._render()

    def on_unmount(self) -> None:
        for unsubscribe in self._unsubscribe:
            unsubscribe()
        self._close_logs()
        self.colima.stop_polling()
        self.docker.stop_polling()

    # Selection
    def _visible_containers(self) -> list[DockerContainer]:
        if self.show_all:
            return sort_containers(self.docker.containers, self.sort_mode)
        return self.docker.pinned_containers

    def _pane_items(self, pane: Optional[str] = None) -> list[Any]:
        pane = pane or self.focused_pane
        if pane == "instances":
            return list(self.colima.instances)
        return self._visible_containers()

    def _selected_item(self, pane: Optional[str] = None) -> Optional[Any]:
        pane = pane or self.focused_pane
        items = self._pane_items(pane)
        if not items:
            return None
        index = max(0, min(self.selected[pane], len(items) - 1))
        self.selected[pane] = index
        return items[index]

    def _selected_instance(self) -> Optional[ColimaInstance]:
        return self._selected_item("instances")

    def _selected_container(self) -> Optional[DockerContainer]:
        if self.focused_pane != "containers":
            return None
        return self._selected_item("containers")

    # Rendering
    def _set_message(self, message: str) -> None:
        self.message = message

    def _render_instances(self) -> str:
        if self.colima.is_loading:
            return "Loading Colima instances..."
        instances = self.colima.instances
        if not instances:
            return "No Colima instances found"
        lines = []
        active = self.focused_pane == "instances"
        for idx, instance in enumerate(instances):
            marker = ">" if active and idx == self.selected["instances"] else " "
            lines.append(f"{marker} {instance_row(instance)}")
        return "\n".join(lines)

    def _render_containers(self) -> str:
        banner = docker_banner(self.docker)
        if banner:
            return banner
        if self.docker.is_loading:
            return "Loading containers..."

        containers = self._visible_containers()
        total = len(self.docker.containers)
        running = sum(1 for c in self.docker.containers if c.status is ContainerStatus.RUNNING)
        if self.show_all:
            title = f"ALL CONTAINERS ({running} of {total} running, sort: {self.sort_mode})"
        else:
            title = f"PINNED ({self.docker.unpinned_running_count} other running)"

        lines = [title, ""]
        active = self.focused_pane == "containers"
        for idx, container in enumerate(containers):
            marker = ">" if active and idx == self.selected["containers"] else " "
            row = container_row(
                container,
                self.docker.pins.covers(container),
                self.docker.is_pending(container.id),
            )
            lines.append(f"{marker} {row}")
        if not containers:
            lines.append("(no containers)" if self.show_all else "No Pinned Containers")
        return "\n".join(lines)

    def _render_info(self) -> str:
        container = self._selected_container()
        if container is not None:
            return "\n".join([
                f"ID: {container.short_id}",
                f"Name: {container.name}",
                f"Image: {container.image}",
                f"Status: {container.status_text or container.status.value}",
                f"Ports: {container.full_ports_display}",
                f"Created: {container.created}",
            ])
        instance = self._selected_instance()
        if instance is None:
            return "No selection"
        user = self.colima.configured_user or f"{self.colima.current_user} (current)"
        lines = [f"Profile: {instance.name}", *instance.status_lines, "", f"User: {user}"]
        if self.colima.needs_sudo:
            fix = "on" if self.colima.auto_fix_socket_permissions else "off"
            lines.append(f"Auto-fix socket permissions: {fix}")
        return "\n".join(lines)

    def _render_logs(self) -> str:
        if not self.logs:
            return "(no logs)"
        return "\n".join(self.logs[-self.ui_config.max_log_lines:])

    def _render_status(self) -> str:
        pane = self.focused_pane.upper()
        return f"{pane}  {self.message}".strip()

    def _render(self) -> None:
        self.query_one("#instances", Static).update(rich_escape(self._render_instances()))
        self.query_one("#containers", Static).update(rich_escape(self._render_containers()))
        self.query_one("#info", Static).update(rich_escape(self._render_info()))
        self.query_one("#logs", Static).update(rich_escape(self._render_logs()))
        self.query_one("#status", Static).update(rich_escape(self._render_status()))

    # Logs
    def _append_logs(self, text: str) -> None:
        self.logs.extend(text.splitlines())
        overflow = len(self.logs) - self.ui_config.max_log_lines
        if overflow > 0:
            del self.logs[:overflow]
        self._render()

    def _close_logs(self) -> None:
        if self.log_stream is not None:
            self.log_stream.close()
        self.log_stream = None
        self.log_container = None

    # Flows
    async def _confirm(self, question: str) -> bool:
        result = await self.push_screen_wait(ConfirmScreen(question))
        return bool(result)

    async def _input(self, prompt: str, value: str = "") -> Optional[str]:
        return await self.push_screen_wait(InputScreen(prompt, value))

    async def _show(self, title: str, body: str) -> None:
        await self.push_screen_wait(MessageScreen(title, body))

    def _run_flow(self, flow: Any) -> None:
        self.run_worker(flow, group="user-action", exclusive=True, thread=False)

    async def _stop_instance_flow(self, profile: str) -> None:
        if await self._confirm(f"Stop Colima profile '{profile}'? Its containers will stop too."):
            self.colima.stop_instance(profile)
            self._set_message(f"Stopping {profile}")
        self._render()

    async def _set_user_flow(self) -> None:
        value = await self._input(
            "Username whose Colima should be managed (leave blank for current user):",
            self.colima.configured_user or "",
        )
        if value is None:
            return
        error = self.colima.set_colima_user(value)
        if error:
            await self._show("Invalid User", error)
            return
        self.docker.update_configured_user(self.colima.configured_user)
        self._set_message(f"Colima user: {self.colima.effective_user}")
        self._render()

    async def _diagnostics_flow(self) -> None:
        self._set_message("Running diagnostics...")
        self._render()
        title, body = await self.docker.run_diagnostics()
        self._set_message("")
        await self._show(title, body)

    async def _inspect_flow(self, container: DockerContainer) -> None:
        output = await self.docker.inspect_container(container.id)
        self._close_logs()
        self.logs = output.splitlines() or ["(no output)"]
        self.set_class(False, "no-logs")
        self._set_message(f"Inspect {container.name}")
        self._render()

    # Actions
    def action_switch_pane(self) -> None:
        idx = self.PANES.index(self.focused_pane)
        self.focused_pane = self.PANES[(idx + 1) % len(self.PANES)]
        self._render()

    def action_up(self) -> None:
        pane = self.focused_pane
        self.selected[pane] = max(0, self.selected[pane] - 1)
        self._render()

    def action_down(self) -> None:
        pane = self.focused_pane
        count = len(self._pane_items())
        self.selected[pane] = max(0, min(self.selected[pane] + 1, count - 1))
        self._render()

    def action_start(self) -> None:
        if self.focused_pane == "instances":
            instance = self._selected_instance()
            if instance and instance.status.is_stopped:
                self.colima.start_instance(instance.name)
                self._set_message(f"Starting {instance.name}")
        else:
            container = self._selected_container()
            if container:
                self.docker.start_container(container.id)
        self._render()

    def action_stop(self) -> None:
        if self.focused_pane == "instances":
            instance = self._selected_instance()
            if instance and instance.status.is_running:
                self._run_flow(self._stop_instance_flow(instance.name))
        else:
            container = self._selected_container()
            if container:
                self.docker.stop_container(container.id)
        self._render()

    def action_pause(self) -> None:
        container = self._selected_container()
        if container is None:
            return
        if container.status is ContainerStatus.PAUSED:
            self.docker.unpause_container(container.id)
        elif container.status is ContainerStatus.RUNNING:
            self.docker.pause_container(container.id)

    def action_toggle_pin(self) -> None:
        container = self._selected_container()
        if container:
            self.docker.toggle_pin(container.id)

    def action_toggle_all(self) -> None:
        self.show_all = not self.show_all
        self.selected["containers"] = 0
        self._render()

    def action_toggle_logs(self) -> None:
        container = self._selected_container()
        following = self.log_container
        self._close_logs()
        self.logs = []
        if container is None or following == container.id:
            self.set_class(True, "no-logs")
            self._render()
            return
        self.log_stream = self.docker.stream_logs(container.id, self._append_logs)
        self.log_container = container.id
        self.set_class(False, "no-logs")
        self._set_message(f"Following logs: {container.name}")
        self._render()

    def action_inspect(self) -> None:
        container = self._selected_container()
        if container:
            self._run_flow(self._inspect_flow(container))

    def action_shell(self) -> None:
        container = self._selected_container()
        if container and container.status is ContainerStatus.RUNNING:
            self.docker.open_shell(container.id)
            self._set_message(f"Opened shell for {container.name}")
            self._render()

    def action_cycle_sort(self) -> None:
        idx = SORT_MODES.index(self.sort_mode)
        self.sort_mode = SORT_MODES[(idx + 1) % len(SORT_MODES)]
        self._render()

    def action_set_user(self) -> None:
        self._run_flow(self._set_user_flow())

    def action_diagnostics(self) -> None:
        self._run_flow(self._diagnostics_flow())

    def action_toggle_auto_fix(self) -> None:
        enabled = not self.colima.auto_fix_socket_permissions
        self.colima.set_auto_fix_socket_permissions(enabled)
        self._set_message(f"Auto-fix socket permissions {'on' if enabled else 'off'}")
        self._render()

    def action_refresh(self) -> None:
        self.colima.poller.trigger()
        self.docker.poller.trigger()

    def check_action(self, action: str, parameters: tuple[object, ...]) -> bool:
        # If a modal screen is active, app-level bindings must not steal keys.
        if len(self.screen_stack) > 1:
            return False
        return True


def run(colima: ColimaManager, docker: DockerManager, ui_config: Optional[UIConfig] = None) -> None:
    app = CDPlayerApp(colima, docker, ui_config)
    app.run()
