"""
Main entry point for the Claim Provisioner.

This module wires the record store, the provisioner plugin, the claim
reconciler, the controller and the input plugins together and runs them.
"""

import asyncio
import logging
import signal
from typing import List, Optional

from config import get_config
from controller import Controller
from plugins.inputs.base import InputPlugin
from plugins.provisioners.base import Provisioner
from plugins.registry import get_registry, register_builtin_plugins
from reconciler import ClaimReconciler
from store import PostgresStore

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


class Application:
    """Main application that orchestrates the controller and plugins."""

    def __init__(self):
        self.config = get_config()
        self.store: Optional[PostgresStore] = None
        self.provisioner: Optional[Provisioner] = None
        self.reconciler: Optional[ClaimReconciler] = None
        self.controller: Optional[Controller] = None
        self.input_plugins: List[InputPlugin] = []
        self.running = False

        logging.getLogger().setLevel(self.config.api.log_level.upper())

    async def initialize(self):
        """Initialize all components."""
        logger.info("Initializing Claim Provisioner")

        register_builtin_plugins()
        registry = get_registry()

        db_config = self.config.database
        self.store = PostgresStore(
            host=db_config.host,
            port=db_config.port,
            database=db_config.database,
            user=db_config.user,
            password=db_config.password,
            min_pool_size=db_config.min_pool_size,
            max_pool_size=db_config.max_pool_size,
        )
        await self.store.connect()
        await self.store.initialize_schema()
        logger.info("Record store initialized")

        # Plugin config from the environment, overridable via PLUGIN_CONFIGS
        rec_config = self.config.reconciler
        plugin_name = rec_config.provisioner_plugin
        provisioner_config = dict(registry.get_provisioner_plugin_config(plugin_name))
        provisioner_config.update(self.config.plugins.get_plugin_config(plugin_name))
        self.provisioner = await registry.get_provisioner_plugin(
            plugin_name, provisioner_config
        )

        self.reconciler = ClaimReconciler(
            store=self.store,
            provisioner_name=rec_config.provisioner_name,
            provisioner=self.provisioner,
            options=rec_config.options(),
            logger=logging.getLogger("reconciler"),
        )

        self.controller = Controller(
            reconciler=self.reconciler,
            store=self.store,
            config=self.config.controller,
        )

        # Determine which input plugins to load
        enabled_inputs = self.config.plugins.enabled_input_plugins
        if not enabled_inputs:
            enabled_inputs = registry.list_input_plugins()

        for input_name in enabled_inputs:
            if not registry.has_input_plugin(input_name):
                logger.warning(f"Input plugin '{input_name}' not found, skipping")
                continue

            input_config = dict(registry.get_input_plugin_config(input_name))
            input_config.update(self.config.plugins.get_plugin_config(input_name))

            plugin = await registry.get_input_plugin(input_name, input_config)
            plugin.set_store(self.store)
            self.input_plugins.append(plugin)
            logger.info(f"Initialized input plugin: {input_name}")

        logger.info("All components initialized")

    async def start(self):
        """Start the application."""
        if not self.controller:
            await self.initialize()

        self.running = True
        logger.info(
            f"Starting Claim Provisioner for provisioner "
            f"{self.reconciler.provisioner_name}"
        )

        # Start controller and all input plugins concurrently
        tasks = [asyncio.create_task(self.controller.start())]
        for plugin in self.input_plugins:
            tasks.append(asyncio.create_task(plugin.start(self.controller.on_claim_event)))

        try:
            await asyncio.gather(*tasks)
        except asyncio.CancelledError:
            logger.info("Application tasks cancelled")

    async def stop(self):
        """Stop the application gracefully."""
        if not self.running:
            return
        logger.info("Stopping Claim Provisioner")
        self.running = False

        for plugin in self.input_plugins:
            await plugin.stop()

        if self.controller:
            await self.controller.stop()

        if self.store:
            await self.store.close()

        logger.info("Claim Provisioner stopped")


async def main():
    """Main entry point."""
    app = Application()

    # Set up signal handlers for graceful shutdown
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(app.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        await app.stop()


if __name__ == "__main__":
    asyncio.run(main())
