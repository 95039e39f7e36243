"""
HTML rendering of captured chunk output.
"""
from .attributes import OutputFormat


def escape_html(text: str) -> str:
    return (
        text.replace('&', '&amp;')
        .replace('<', '&lt;')
        .replace('>', '&gt;')
        .replace('"', '&quot;')
    )


def error_block(message: str) -> str:
    return f'<pre class="code-chunk-error">{escape_html(message)}</pre>'


def image_tag(payload: str, alt: str, css_class: str) -> str:
    return f'<img src="data:image/png;base64,{payload}" alt="{alt}" class="{css_class}">'


def render_output(
    stdout: str,
    stderr: str,
    output_format: OutputFormat,
    is_image_capture: bool = False,
) -> str:
    """
    Render captured output for display

    Args:
        stdout: Captured standard output
        stderr: Captured standard error, appended as an error block when set
        output_format: Presentation of stdout
        is_image_capture: stdout holds a base64 PNG from plot capture

    Returns:
        HTML fragment
    """
    if is_image_capture and stdout and not stdout.startswith('<'):
        html = image_tag(stdout.strip(), "matplotlib output", "code-chunk-matplotlib")
    elif output_format == OutputFormat.TEXT:
        html = f'<pre class="code-chunk-output-text">{escape_html(stdout)}</pre>' if stdout else ''
    elif output_format == OutputFormat.HTML:
        html = stdout
    elif output_format == OutputFormat.MARKDOWN:
        html = f'<div class="code-chunk-output-markdown">{stdout}</div>'
    elif output_format == OutputFormat.IMAGE:
        html = image_tag(stdout.strip(), "output", "code-chunk-output-png") if stdout else ''
    else:
        html = ''

    if stderr:
        html += error_block(stderr)

    return html
