from typing import List

from ..models import ChunkResult, ChunkStatus


class RunResultsDisplay:
    """Display chunk run results"""

    @staticmethod
    def display_results(input_file: str, results: List[ChunkResult], show_output: bool = True) -> None:
        """
        Print one block per chunk result

        Args:
            input_file: Document the chunks came from
            results: Results in run order
            show_output: Whether to print the rendered output
        """
        if not results:
            print("\nNo chunks were run.")
            return

        print(f"\n{'='*80}")
        print(f"Ran {len(results)} chunks from: {input_file}")
        print(f"{'='*80}\n")

        for result in results:
            marker = "✓" if result.status == ChunkStatus.SUCCESS else "✗"
            print(f"{marker} {result.chunk_id} (line {result.source_line + 1}): {result.status.value}")

            if show_output and result.rendered_result:
                print(f"\n{result.rendered_result}")

            if result.status == ChunkStatus.ERROR and result.error:
                print(f"\nError:\n{result.error}")
            print(f"{'-'*80}\n")

    @staticmethod
    def print_summary(results: List[ChunkResult]) -> None:
        failed = sum(1 for result in results if result.status != ChunkStatus.SUCCESS)
        print(f"  Succeeded: {len(results) - failed}")
        print(f"  Failed: {failed}")
