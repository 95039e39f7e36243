import logging
from pathlib import Path
from typing import Optional
import yaml

from ..config import ExecutionConfig, RunnerConfig, DEFAULT_TIMEOUT_MS, DEFAULT_LATEX_ENGINE

logger = logging.getLogger(__name__)


class ConfigurationLoader:
    """Load and parse configuration files for the run command"""

    @staticmethod
    def load_run_config(config_path: Optional[str]) -> RunnerConfig:
        """
        Load configuration for the run command

        Args:
            config_path: Path to YAML config file, or None for defaults

        Returns:
            RunnerConfig
        """
        if not config_path:
            return RunnerConfig()

        logger.info(f"Loading run config from: {config_path}")
        config_data = load_config_file(config_path)

        execution_config = ExecutionConfig(
            enable_execution=bool(config_data.get('enable_execution', False)),
            timeout_ms=int(config_data.get('timeout_ms', DEFAULT_TIMEOUT_MS)),
            default_shell=config_data.get('default_shell') or '',
            latex_engine=config_data.get('latex_engine') or DEFAULT_LATEX_ENGINE,
        )

        return RunnerConfig(
            execution=execution_config,
            log_level=config_data.get('log_level', 'INFO'),
            log_file=config_data.get('log_file'),
        )


def load_config_file(config_path: str) -> dict:
    """
    Load configuration from YAML file

    Args:
        config_path: Path to config file

    Returns:
        Configuration dictionary
    """
    path = Path(config_path)

    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    with open(path, 'r', encoding='utf-8') as f:
        config = yaml.safe_load(f)

    return config or {}
