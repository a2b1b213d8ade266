"""
FFmpeg filter graph builder.

Graphs are assembled from filter nodes connected by labelled pads and turned
into FFmpeg's textual syntax only when serialized.
"""

from dataclasses import dataclass, field
from typing import Optional, Union

FilterArg = Union[str, int, float]


@dataclass(frozen=True)
class Filter:
    """A single filter with positional and named arguments."""

    name: str
    args: tuple[FilterArg, ...] = ()
    options: tuple[tuple[str, FilterArg], ...] = ()

    def render(self) -> str:
        parts = [_format_arg(a) for a in self.args]
        parts.extend(f"{key}={_format_arg(value)}" for key, value in self.options)
        if not parts:
            return self.name
        return f"{self.name}={':'.join(parts)}"


def make_filter(name: str, *args: FilterArg, **options: FilterArg) -> Filter:
    return Filter(name=name, args=tuple(args), options=tuple(options.items()))


@dataclass
class FilterNode:
    """A chain of filters reading from input pads and writing to output pads."""

    filters: list[Filter]
    inputs: list[str] = field(default_factory=list)
    outputs: list[str] = field(default_factory=list)

    def render(self) -> str:
        ins = "".join(f"[{label}]" for label in self.inputs)
        outs = "".join(f"[{label}]" for label in self.outputs)
        return f"{ins}{','.join(f.render() for f in self.filters)}{outs}"


class FilterGraph:
    """
    Labelled filter graph.

    Stream specifiers such as ``0:v`` are valid input labels. Labels created by
    ``add`` must be consumed exactly once.
    """

    def __init__(self):
        self.nodes: list[FilterNode] = []
        self._counter = 0

    def new_label(self, prefix: str = "v") -> str:
        self._counter += 1
        return f"{prefix}{self._counter}"

    def add(
        self,
        filters: Union[Filter, list[Filter]],
        inputs: Union[str, list[str]],
        outputs: Optional[Union[str, list[str]]] = None,
    ) -> list[str]:
        """Add a node and return its output labels (a fresh one if none given)."""
        filter_list = [filters] if isinstance(filters, Filter) else list(filters)
        input_list = [inputs] if isinstance(inputs, str) else list(inputs)
        if outputs is None:
            output_list = [self.new_label()]
        elif isinstance(outputs, str):
            output_list = [outputs]
        else:
            output_list = list(outputs)
        self.nodes.append(FilterNode(filters=filter_list, inputs=input_list, outputs=output_list))
        return output_list

    def chain(self, filters: Union[Filter, list[Filter]], source: str) -> str:
        """Append filters to a single stream and return the new stream label."""
        return self.add(filters, source)[0]

    def validate(self) -> None:
        """
        Raise ValueError if a node reads a label no earlier node produced, or a
        produced label is consumed more than once.
        """
        produced: set[str] = set()
        consumed: set[str] = set()
        for node in self.nodes:
            for label in node.inputs:
                if ":" in label:
                    continue
                if label not in produced:
                    raise ValueError(f"Filter input [{label}] is not produced by an earlier node")
                if label in consumed:
                    raise ValueError(f"Filter output [{label}] is consumed twice")
                consumed.add(label)
            produced.update(node.outputs)

    def render(self) -> str:
        self.validate()
        return ";".join(node.render() for node in self.nodes)


def render_chain(filters: list[Filter]) -> str:
    """Serialize a linear chain for ``-vf``."""
    return ",".join(f.render() for f in filters)


def escape_filter_path(path: str) -> str:
    """
    Escape a file path for use as a filter argument.

    Backslashes become forward slashes (FFmpeg accepts them on every
    platform), colons are escaped and the result is single-quoted.
    """
    escaped = path.replace("\\", "/")
    escaped = escaped.replace(":", "\\:")
    escaped = escaped.replace("'", "'\\''")
    return f"'{escaped}'"


def _format_arg(value: FilterArg) -> str:
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)
