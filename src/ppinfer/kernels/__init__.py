"""MCMC kernels and kernel combinators."""

from ppinfer.config import LARJOptions, MHOptions
from ppinfer.kernels.combinators import repeat, sequence, tap
from ppinfer.kernels.larj import InterpolationTrace, LARJKernel, larj_kernel
from ppinfer.kernels.mh import MHKernel, mh_kernel
from ppinfer.kernels.registry import parse_kernel_options, register_kernel, registered_kernels

register_kernel("MH", mh_kernel, MHOptions)
register_kernel(
    "LARJ", larj_kernel, LARJOptions, kernel_fields=("jump_kernel", "diffusion_kernel")
)

__all__ = [
    "MHKernel",
    "mh_kernel",
    "LARJKernel",
    "larj_kernel",
    "InterpolationTrace",
    "tap",
    "sequence",
    "repeat",
    "register_kernel",
    "registered_kernels",
    "parse_kernel_options",
]
