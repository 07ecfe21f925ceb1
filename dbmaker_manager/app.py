"""Main Textual application for the DbMaker instance manager."""

from typing import Optional

from textual.app import App, ComposeResult
from textual.binding import Binding

from .core.instance_manager import InstanceManager
from .core.monitor import ContainerMonitor
from .core.store import InstanceStore, JsonInstanceStore
from .runtime import DockerRuntimeClient


class DbMakerManagerApp(App):
    """Operator console for provisioned database instances."""

    CSS = """
    #instance-count {
        padding: 0 1;
        text-style: bold;
    }

    #instance-table {
        height: 1fr;
    }

    .action-buttons, .wizard-buttons {
        height: auto;
        padding: 1 0;
    }

    .action-buttons Button, .wizard-buttons Button {
        margin: 0 1;
    }

    #wizard-container {
        padding: 1 2;
    }

    .wizard-title {
        text-style: bold;
        padding-bottom: 1;
    }

    .error-message {
        color: $error;
    }

    .hidden {
        display: none;
    }
    """

    ENABLE_COMMAND_PALETTE = False

    BINDINGS = [
        Binding("q", "quit", "Quit", priority=True, show=True),
        Binding("c", "create_instance", "Create", show=True),
        Binding("r", "refresh", "Refresh", show=True),
    ]

    def __init__(
        self,
        instance_manager: Optional[InstanceManager] = None,
        store: Optional[InstanceStore] = None,
    ):
        """
        Initialize the application.

        Args:
            instance_manager: Lifecycle manager (defaults to one over the local Docker daemon)
            store: Instance record store (defaults to the JSON store)
        """
        super().__init__()
        self.instance_manager = instance_manager or InstanceManager(DockerRuntimeClient())
        self.store = store or JsonInstanceStore()
        self.monitor = ContainerMonitor(self.instance_manager, self.store)

    def compose(self) -> ComposeResult:
        """Create child widgets for the app."""
        # Footer is in each Screen instead
        return []

    def on_mount(self) -> None:
        """Set up the app when mounted."""
        from .ui.screens.main_screen import MainScreen
        self.push_screen(MainScreen(self.instance_manager, self.store, self.monitor))

    def action_create_instance(self):
        """Push create instance form."""
        from .ui.screens.create_wizard import CreateInstanceWizard
        self.push_screen(CreateInstanceWizard(self.instance_manager, self.store))

    def action_refresh(self):
        """Refresh instance list."""
        from .ui.screens.main_screen import MainScreen
        if isinstance(self.screen, MainScreen):
            self.screen.refresh_instance_status()
            self.screen.refresh_instances()
