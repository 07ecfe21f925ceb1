"""Main screen showing list of instances."""

import asyncio

from textual.app import ComposeResult
from textual.screen import Screen
from textual.widgets import Static, DataTable, Button, Footer
from textual.containers import Horizontal
from textual.reactive import reactive
from textual.binding import Binding

from ...core.instance import Instance, InstanceStatus
from ...core.instance_manager import InstanceManager
from ...core.monitor import ContainerMonitor
from ...core.store import InstanceStore
from ...config import Config


class MainScreen(Screen):
    """Main screen showing list of instances."""

    BINDINGS = [
        Binding("s", "start_instance", "Start", show=True),
        Binding("t", "stop_instance", "Stop", show=True),
        Binding("d", "delete_instance", "Delete", show=True),
        Binding("enter", "select_instance", "Details", show=False),
    ]

    selected_instance_id = reactive(None)

    def __init__(self, instance_manager: InstanceManager, store: InstanceStore, monitor: ContainerMonitor):
        """
        Initialize main screen.

        Args:
            instance_manager: InstanceManager instance
            store: Instance record store
            monitor: Monitor used to reconcile record status
        """
        super().__init__()
        self.instance_manager = instance_manager
        self.store = store
        self.monitor = monitor

    def compose(self) -> ComposeResult:
        """Compose main screen layout."""
        yield Static(
            f"DbMaker Instance Manager - Instances: {len(self.store.list_instances())}",
            id="instance-count"
        )

        # Instance table
        yield DataTable(id="instance-table", zebra_stripes=True, show_header=True, show_cursor=True)

        # Action buttons
        yield Horizontal(
            Button("Create Instance", id="btn-create", variant="success"),
            Button("Start", id="btn-start", variant="success"),
            Button("Stop", id="btn-stop", variant="warning"),
            Button("Delete", id="btn-delete", variant="error"),
            classes="action-buttons"
        )
        yield Footer()

    def on_mount(self):
        """Initialize table when screen is mounted."""
        table = self.query_one("#instance-table", DataTable)
        table.add_columns("Name", "Owner", "Template", "Status", "Port", "Subdomain", "Connection", "Created")

        self.refresh_instances()

        # Set up auto-refresh for status updates
        self.set_interval(Config.STATUS_REFRESH_INTERVAL, self.refresh_instance_status)

    def refresh_instances(self):
        """Rebuild the table from the store."""
        table = self.query_one("#instance-table", DataTable)
        table.clear()

        instances = sorted(self.store.list_instances(), key=lambda i: i.created_at)

        for instance in instances:
            table.add_row(
                instance.name,
                instance.owner_id,
                instance.template_type,
                self._format_status(instance.status),
                str(instance.port) if instance.port else "-",
                instance.subdomain,
                instance.connection_string,
                instance.created_at.strftime("%Y-%m-%d %H:%M"),
                key=instance.id
            )

        count_widget = self.query_one("#instance-count", Static)
        count_widget.update(f"Instances: {len(instances)}")

        # Auto-select first instance if there's at least one
        if instances and not self.selected_instance_id:
            self.selected_instance_id = instances[0].id
            table.move_cursor(row=0)

    def refresh_instance_status(self):
        """Reconcile record status with the runtime in the background."""
        if self.is_mounted:
            self.run_worker(self._reconcile_worker(), exclusive=True, group="reconcile")

    async def _reconcile_worker(self):
        changed = await asyncio.to_thread(self.monitor.reconcile)
        if changed:
            self.refresh_instances()

    def _format_status(self, status: InstanceStatus) -> str:
        """Format status with colored indicators."""
        colors = {
            InstanceStatus.RUNNING: "green",
            InstanceStatus.STOPPED: "red",
            InstanceStatus.CREATING: "yellow",
            InstanceStatus.REMOVING: "yellow",
            InstanceStatus.FAILED: "red bold",
        }
        color = colors.get(status, "white")
        return f"[{color}]{status.value.upper()}[/{color}]"

    def on_data_table_row_highlighted(self, event):
        """Handle row highlight (cursor movement or click)."""
        self.selected_instance_id = event.row_key.value

    def on_button_pressed(self, event):
        """Handle button presses."""
        if event.button.id == "btn-create":
            self.app.action_create_instance()
        elif event.button.id == "btn-start":
            self.action_start_instance()
        elif event.button.id == "btn-stop":
            self.action_stop_instance()
        elif event.button.id == "btn-delete":
            self.action_delete_instance()

    def _selected_instance(self):
        if not self.selected_instance_id:
            self.app.notify("Please select an instance first", severity="warning")
            return None
        instance = self.store.get(self.selected_instance_id)
        if instance is None:
            self.app.notify("Instance no longer exists", severity="warning")
        return instance

    def action_start_instance(self):
        """Start selected instance."""
        instance = self._selected_instance()
        if instance is None:
            return

        self.app.notify(f"Starting {instance.name} in background...", severity="information")
        self.run_worker(self._start_instance_worker(instance), exclusive=False)

    async def _start_instance_worker(self, instance: Instance):
        """Background worker to start instance."""
        started = await asyncio.to_thread(self.instance_manager.start_container, instance.container_id)
        if not started:
            self.app.notify(f"Failed to start {instance.name}", severity="error")
            return

        if instance.port:
            await asyncio.to_thread(self.instance_manager.route_sync.publish, instance.subdomain, instance.port)
        instance.status = InstanceStatus.RUNNING
        self.store.save(instance)
        self.app.notify(f"{instance.name} started", severity="information")
        self.refresh_instances()

    def action_stop_instance(self):
        """Stop selected instance."""
        instance = self._selected_instance()
        if instance is None:
            return

        self.app.notify(f"Stopping {instance.name} in background...", severity="information")
        self.run_worker(self._stop_instance_worker(instance), exclusive=False)

    async def _stop_instance_worker(self, instance: Instance):
        """Background worker to stop instance."""
        stopped = await asyncio.to_thread(self.instance_manager.stop_container, instance.container_id)
        if not stopped:
            self.app.notify(f"Failed to stop {instance.name}", severity="error")
            return

        instance.status = InstanceStatus.STOPPED
        self.store.save(instance)
        self.app.notify(f"{instance.name} stopped", severity="information")
        self.refresh_instances()

    def action_delete_instance(self):
        """Remove container, route and record of the selected instance."""
        instance = self._selected_instance()
        if instance is None:
            return

        previous = instance.status
        instance.status = InstanceStatus.REMOVING
        self.store.save(instance)
        self.refresh_instances()
        self.run_worker(self._delete_instance_worker(instance, previous), exclusive=False)

    async def _delete_instance_worker(self, instance: Instance, previous: InstanceStatus):
        """Background worker to remove instance."""
        try:
            removed = await asyncio.to_thread(
                self.instance_manager.remove_container,
                instance.container_id,
                instance.subdomain,
                instance.port,
            )
        except Exception as e:
            self.app.notify(f"Failed to delete instance: {e}", severity="error")
            removed = False

        if not removed:
            instance.status = previous
            self.store.save(instance)
            self.refresh_instances()
            self.app.notify(f"Container of {instance.name} could not be removed", severity="error")
            return

        self.store.delete(instance.id)
        self.selected_instance_id = None
        self.refresh_instances()
        self.app.notify(f"Instance {instance.name} deleted", severity="information")

    def action_select_instance(self):
        """Show a short summary of the selected instance."""
        instance = self._selected_instance()
        if instance:
            self.app.notify(
                f"{instance.name} - {instance.status.value} - {instance.connection_string or 'no connection string'}",
                severity="information"
            )
