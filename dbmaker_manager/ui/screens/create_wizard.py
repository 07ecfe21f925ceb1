"""Create instance form screen."""

import asyncio
from functools import partial
from typing import Dict

from textual.app import ComposeResult
from textual.screen import Screen
from textual.widgets import Static, Input, Button, Label
from textual.containers import Container, Vertical, Horizontal

from ...core.errors import OrchestratorError
from ...core.instance import InstanceStatus
from ...core.instance_manager import InstanceManager
from ...core.store import InstanceStore


def parse_overrides(text: str) -> Dict[str, str]:
    """
    Parse ``KEY=VALUE`` pairs separated by commas or whitespace.

    Args:
        text: Raw input, e.g. ``POSTGRES_USER=app, POSTGRES_PASSWORD=secret``

    Returns:
        Override mapping

    Raises:
        ValueError: If a pair has no ``=`` or an empty key
    """
    overrides = {}
    for pair in text.replace(",", " ").split():
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValueError(f"Invalid override '{pair}', expected KEY=VALUE")
        overrides[key] = value
    return overrides


class CreateInstanceWizard(Screen):
    """Form for provisioning a new database instance."""

    def __init__(self, instance_manager: InstanceManager, store: InstanceStore):
        """
        Initialize wizard.

        Args:
            instance_manager: InstanceManager instance
            store: Store the created instance is saved to
        """
        super().__init__()
        self.instance_manager = instance_manager
        self.store = store

    def compose(self) -> ComposeResult:
        """Compose wizard UI."""
        templates = ", ".join(self.instance_manager.template_manager.available_templates())

        yield Container(
            Vertical(
                Static("Create New Instance", id="wizard-title", classes="wizard-title"),

                Label("Owner ID:"),
                Input(placeholder="user123", id="input-owner"),

                Label(f"Template ({templates}; optional @version):"),
                Input(placeholder="postgresql@16-alpine", id="input-template"),

                Label("Instance Name:"),
                Input(placeholder="mydb", id="input-name"),

                Label("Environment overrides (optional):"),
                Input(placeholder="POSTGRES_USER=app POSTGRES_PASSWORD=secret", id="input-overrides"),

                Horizontal(
                    Button("Cancel", id="btn-cancel", variant="error"),
                    Button("Create", id="btn-create", variant="success"),
                    classes="wizard-buttons"
                ),

                Static("", id="wizard-error", classes="error-message hidden"),

                id="wizard-container"
            )
        )

    def _show_error(self, message: str):
        error_msg = self.query_one("#wizard-error", Static)
        error_msg.update(message)
        error_msg.remove_class("hidden")

    def on_button_pressed(self, event):
        """Handle button clicks."""
        if event.button.id == "btn-cancel":
            self.app.pop_screen()
        elif event.button.id == "btn-create":
            self._create_instance()

    def _create_instance(self):
        """Validate the form and create the instance in the background."""
        owner_id = self.query_one("#input-owner", Input).value.strip()
        template_key = self.query_one("#input-template", Input).value.strip()
        name = self.query_one("#input-name", Input).value.strip()

        if not owner_id or not template_key or not name:
            self._show_error("Owner, template and name are required")
            return

        try:
            overrides = parse_overrides(self.query_one("#input-overrides", Input).value)
        except ValueError as e:
            self._show_error(str(e))
            return

        self.query_one("#wizard-error", Static).add_class("hidden")
        self.app.notify(f"Creating instance {name} in background...", severity="information")
        self.run_worker(self._create_instance_worker(owner_id, template_key, name, overrides), exclusive=True)

    async def _create_instance_worker(self, owner_id: str, template_key: str, name: str, overrides: Dict[str, str]):
        """Background worker to create instance."""
        create_func = partial(
            self.instance_manager.create_instance,
            owner_id=owner_id,
            template_key=template_key,
            name=name,
            configuration=overrides,
        )
        try:
            instance = await asyncio.to_thread(create_func)
        except (OrchestratorError, ValueError) as e:
            self._show_error(f"Failed to create instance: {e}")
            return

        self.store.save(instance)
        self.app.pop_screen()

        from .main_screen import MainScreen
        if isinstance(self.app.screen, MainScreen):
            self.app.screen.refresh_instances()

        if instance.status == InstanceStatus.RUNNING:
            self.app.notify(f"Instance '{instance.name}' is running on port {instance.port}", severity="information")
        else:
            self.app.notify(f"Instance '{instance.name}' failed to start", severity="error")
