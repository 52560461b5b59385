from cmt.cli import OutputFormatter, ProgressTracker, format_output, print_output

__all__ = ["OutputFormatter", "ProgressTracker", "format_output", "print_output"]
