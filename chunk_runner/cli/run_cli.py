import argparse
import sys
import logging
import asyncio
from dataclasses import replace
from pathlib import Path

from .config_loader import ConfigurationLoader
from .display import RunResultsDisplay

from ..manager import ChunkManager
from ..models import ChunkStatus
from ..logger import setup_logging

logger = logging.getLogger(__name__)


class RunCommand:
    """Encapsulates run command logic"""

    def __init__(self, args):
        self.args = args
        self.config_loader = ConfigurationLoader()
        self.display = RunResultsDisplay()

    async def execute(self) -> int:
        """
        Execute the run command

        Returns:
            Exit code (0 when every chunk succeeded, non-zero otherwise)
        """
        manager = None
        try:
            config = self.config_loader.load_run_config(self.args.config)
            if self.args.enable_execution:
                config.execution = replace(config.execution, enable_execution=True)
            if self.args.timeout_ms is not None:
                config.execution = replace(config.execution, timeout_ms=self.args.timeout_ms)

            setup_logging(self.args.log_level or config.log_level, config.log_file)

            input_path = Path(self.args.input)
            content = read_markdown_file(self.args.input)
            working_dir = str(input_path.resolve().parent)

            manager = ChunkManager(config.execution)
            chunk_ids = manager.parse(content)
            logger.info(f"Found {len(chunk_ids)} executable chunks in {input_path.name}")

            results = await self._run_selected(manager, working_dir)
            if results is None:
                return 1

            self.display.display_results(self.args.input, results, show_output=not self.args.quiet)
            self.display.print_summary(results)

            if self.args.write:
                updated = manager.apply_source_updates(content)
                if updated != content:
                    input_path.write_text(updated, encoding='utf-8')
                    logger.info(f"Wrote chunk output back to {input_path}")

            return 0 if all(result.status == ChunkStatus.SUCCESS for result in results) else 1

        except KeyboardInterrupt:
            logger.info("\nInterrupted by user")
            print("\n✗ Process interrupted by user", file=sys.stderr)
            return 130
        except FileNotFoundError as e:
            logger.error(f"File not found: {e}")
            print(f"\n✗ Error: File not found - {e}", file=sys.stderr)
            return 1
        except Exception as e:
            logger.error(f"Run failed: {e}", exc_info=True)
            print(f"\n✗ Error: {e}", file=sys.stderr)
            return 1
        finally:
            if manager is not None:
                await manager.aclose()

    async def _run_selected(self, manager: ChunkManager, working_dir: str):
        if self.args.chunk:
            result = await manager.run_chunk(self.args.chunk, working_dir)
            if result is None:
                print(f"\n✗ No chunk with id: {self.args.chunk}", file=sys.stderr)
                return None
            return [result]

        if self.args.line is not None:
            # --line is 1-based like editors; chunks store zero-based lines
            chunk = manager.find_chunk_at_line(self.args.line - 1)
            if chunk is None:
                print(f"\n✗ No code chunk found at line {self.args.line}", file=sys.stderr)
                return None
            return [await manager.run_chunk(chunk.id, working_dir)]

        if self.args.on_save:
            return await manager.run_on_save_chunks(working_dir)

        return await manager.run_all_chunks(working_dir)


def parse_args(argv=None):
    """Parse command-line arguments"""
    parser = argparse.ArgumentParser(
        description='Run executable code chunks embedded in a markdown document',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run every chunk
  chunk-runner --input notes.md --enable-execution

  # Run with settings from a config file
  chunk-runner -i notes.md -c runner.yaml

  # Run the chunk containing line 42 and write its output into the file
  chunk-runner -i notes.md -c runner.yaml --line 42 --write
        """
    )

    parser.add_argument(
        '--input', '-i',
        required=True,
        help='Path to input markdown file'
    )

    parser.add_argument(
        '--config', '-c',
        help='Path to YAML config file (runner.yaml)'
    )

    selection = parser.add_mutually_exclusive_group()
    selection.add_argument(
        '--chunk',
        help='Run only the chunk with this id'
    )
    selection.add_argument(
        '--line',
        type=int,
        help='Run only the chunk containing this 1-based line'
    )
    selection.add_argument(
        '--on-save',
        action='store_true',
        help='Run only chunks marked run_on_save'
    )

    parser.add_argument(
        '--enable-execution',
        action='store_true',
        help='Allow code execution regardless of the config file'
    )

    parser.add_argument(
        '--timeout-ms',
        type=int,
        help='Timeout per chunk in milliseconds'
    )

    parser.add_argument(
        '--write',
        action='store_true',
        help='Write output of modify_source chunks back into the file'
    )

    parser.add_argument(
        '--quiet', '-q',
        action='store_true',
        help='Only print chunk status, not rendered output'
    )

    parser.add_argument(
        '--log-level',
        help='Logging level (overrides config file)'
    )

    return parser.parse_args(argv)


def read_markdown_file(file_path: str) -> str:
    """
    Read markdown file content

    Args:
        file_path: Path to markdown file

    Returns:
        File content as string
    """
    path = Path(file_path)

    if not path.exists():
        raise FileNotFoundError(f"File not found: {file_path}")

    if not path.suffix.lower() in ['.md', '.markdown']:
        raise ValueError(f"Not a markdown file: {file_path}")

    with open(path, 'r', encoding='utf-8') as f:
        content = f.read()

    return content


def main(argv=None):
    """Main entry point"""
    args = parse_args(argv)
    command = RunCommand(args)
    return asyncio.run(command.execute())


if __name__ == '__main__':
    sys.exit(main())
