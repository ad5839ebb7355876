"""
Main application entry point for Skyloft Wallpaper
"""
import sys

import logging
import asyncio
from PyQt6.QtWidgets import QApplication
from PyQt6.QtCore import QtMsgType, qInstallMessageHandler
import qasync

from skyloft import __version__


def qt_message_handler(mode, context, message):
    """Route Qt messages into the logging system."""
    if mode == QtMsgType.QtDebugMsg:
        logging.debug(f"Qt: {message}")
    elif mode == QtMsgType.QtInfoMsg:
        logging.info(f"Qt: {message}")
    elif mode == QtMsgType.QtWarningMsg:
        logging.warning(f"Qt: {message}")
    elif mode == QtMsgType.QtCriticalMsg:
        logging.error(f"Qt: {message}")
    elif mode == QtMsgType.QtFatalMsg:
        logging.critical(f"Qt: {message}")


def setup_logging():
    """Configure application logging"""
    from skyloft.utils.logging_config import setup_logging as setup_categorized_logging

    logging_manager = setup_categorized_logging()
    qInstallMessageHandler(qt_message_handler)

    logger = logging.getLogger(__name__)
    logger.info("=" * 50)
    logger.info(f"Skyloft Wallpaper {__version__} Starting")
    logger.info("=" * 50)

    return logging_manager


async def async_main(logging_manager):
    """Build services, attach the render surface, and start playback"""
    logger = logging.getLogger(__name__)

    try:
        from skyloft.core.context import AppContext
        from skyloft.ui.video import MpvRenderSink

        app = QApplication.instance()

        logger.info("Initializing application context...")
        context = AppContext()
        logging_manager.attach_config_store(context.config_manager)
        app._app_context = context

        config = context.config_manager.config
        if config.behavior.use_as_wallpaper:
            sink = MpvRenderSink(config.overlay)
            sink.cover_screen()
            context.config_manager.config_changed.connect(lambda cfg: sink.apply_overlay(cfg.overlay))
            context.orchestrator.attach_sink(sink)
            app._render_sink = sink
        else:
            logger.info("Wallpaper surface disabled in configuration")

        context.start()
        logger.info(f"Application started: {context.catalog.count} videos in library")

    except Exception as e:
        logger.exception(f"Fatal error during startup: {e}")
        sys.exit(1)


def main():
    """Main application entry point"""
    logging_manager = setup_logging()
    logger = logging.getLogger(__name__)

    app = None
    try:
        app = QApplication(sys.argv)
        app.setApplicationName("Skyloft Wallpaper")
        app.setApplicationVersion(__version__)
        app.setOrganizationName("Skyloft")
        app.setQuitOnLastWindowClosed(False)

        loop = qasync.QEventLoop(app)
        asyncio.set_event_loop(loop)

        logger.info("Starting application with asyncio event loop integration")

        with loop:
            loop.run_until_complete(async_main(logging_manager))
            loop.run_forever()
            context = getattr(app, "_app_context", None)
            if context is not None:
                loop.run_until_complete(context.shutdown())

    except KeyboardInterrupt:
        logger.info("Application interrupted by user")
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        sys.exit(1)
    finally:
        logger.info("Shutting down...")
        context = getattr(app, "_app_context", None)
        if context is not None:
            context.close()
        logger.info("Application closed")


if __name__ == "__main__":
    main()
