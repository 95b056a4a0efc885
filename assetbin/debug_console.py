"""
DebugConsole - thin facade over the "assetbin" logger
"""
import logging

logger = logging.getLogger("assetbin")


class DebugConsole:
    @staticmethod
    def log(message):
        """Print debug message"""
        logger.debug(message)

    @staticmethod
    def info(message):
        logger.info(message)

    @staticmethod
    def warning(message):
        logger.warning(message)

    @staticmethod
    def error(message):
        logger.error(message)
