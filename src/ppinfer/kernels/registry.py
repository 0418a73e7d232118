"""Kernel registry.

Kernels are referred to by name in configuration, either as a bare name
(``"MH"``) or as a single-entry mapping carrying options
(``{"MH": {"discrete_only": True}}``). ``parse_kernel_options`` turns such
a spec into a kernel function ``kernel(cont, trace, **extra_options)``.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass

from pydantic import BaseModel

from ppinfer.errors import KernelConfigError

__all__ = [
    "KernelEntry",
    "register_kernel",
    "registered_kernels",
    "parse_kernel_options",
]


@dataclass(frozen=True)
class KernelEntry:
    name: str
    factory: Callable
    options_model: type[BaseModel]
    kernel_fields: tuple[str, ...] = ()


_KERNELS: dict[str, KernelEntry] = {}


def register_kernel(
    name: str,
    factory: Callable,
    options_model: type[BaseModel],
    kernel_fields: tuple[str, ...] = (),
) -> None:
    """Register ``factory(cont, trace, options, **sub_kernels)`` under ``name``.

    ``kernel_fields`` names the option fields that hold nested kernel specs.
    They are parsed together with the outer spec and handed to the factory
    as keyword arguments of the same name.
    """
    if name in _KERNELS:
        raise KernelConfigError(f"kernel named {name!r} has already been registered")
    _KERNELS[name] = KernelEntry(name, factory, options_model, tuple(kernel_fields))


def registered_kernels() -> tuple[str, ...]:
    return tuple(_KERNELS)


def _split_spec(spec) -> tuple[str, dict]:
    if isinstance(spec, str):
        name, options = spec, {}
    elif isinstance(spec, Mapping) and len(spec) == 1:
        ((name, options),) = spec.items()
        options = dict(options or {})
    else:
        raise KernelConfigError(f"unrecognized kernel option: {spec!r}")
    if name not in _KERNELS:
        raise KernelConfigError(
            f"unknown kernel {name!r}; registered kernels: {', '.join(_KERNELS) or 'none'}"
        )
    return name, options


def parse_kernel_options(spec) -> Callable:
    """Build a kernel function from a kernel spec.

    Options are validated immediately and nested kernel specs are parsed
    along with them, so a bad spec fails before any program runs. Extra
    options supplied when the kernel is called are merged over the
    configured ones.
    """
    name, options = _split_spec(spec)
    entry = _KERNELS[name]
    model = entry.options_model(**options)
    sub_kernels = _parse_sub_kernels(entry, model, entry.kernel_fields)

    def kernel(cont, trace, **extra_options):
        if not extra_options:
            return entry.factory(cont, trace, model, **sub_kernels)
        merged = entry.options_model(**{**options, **extra_options})
        overridden = [f for f in entry.kernel_fields if f in extra_options]
        nested = {**sub_kernels, **_parse_sub_kernels(entry, merged, overridden)}
        return entry.factory(cont, trace, merged, **nested)

    kernel.kernel_name = name
    kernel.options = options
    kernel.sub_kernels = sub_kernels
    return kernel


def _parse_sub_kernels(entry: KernelEntry, model: BaseModel, fields) -> dict[str, Callable]:
    sub_kernels = {}
    for field in fields:
        try:
            sub_kernels[field] = parse_kernel_options(getattr(model, field))
        except KernelConfigError as exc:
            raise KernelConfigError(f"{entry.name}.{field}: {exc}") from exc
    return sub_kernels
