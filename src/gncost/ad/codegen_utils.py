"""
Code generation from SymPy expressions for NumPy, PyTorch and JAX.

Every generated function takes one scalar argument per symbol and returns
a flat 1-D array of its backend:
- scalar expression → shape (1,)
- vector expression → shape (n,)
- matrix expression → shape (m*n,), row-major like ``sp.Matrix.reshape``

PyTorch functions keep autograd graphs (constants become float64
tensors). JAX functions are JIT-compiled by default and can also be
differentiated with ``jax.jacobian`` instead of symbolically.
"""

from typing import Callable, Dict, Union

import numpy as np
import sympy as sp

from gncost.types.backends import Backend

# Helper functions


def _pairwise(name: str, combine: Callable, lift: Callable = lambda a: a) -> Callable:
    """
    Variadic Min/Max for lambdify.

    SymPy's Min/Max take any number of arguments, e.g. Min(x, y, z), while
    np.minimum, torch.minimum and jnp.minimum take two.

    Examples:
        >>> _pairwise("Min", np.minimum)(1, 2, 3)
        1
    """

    def reduce(*args):
        if len(args) == 0:
            raise ValueError(f"{name} requires at least one argument")
        result = lift(args[0])
        for arg in args[1:]:
            result = combine(result, lift(arg))
        return result

    reduce.__name__ = f"_{name.lower()}"
    return reduce


def _torch_tensor(a):
    """Scalars become tensors so that torch.minimum/maximum accept them."""
    import torch

    return a if isinstance(a, torch.Tensor) else torch.as_tensor(a)


def _jax_min(*args):
    import jax.numpy as jnp

    return _pairwise("Min", jnp.minimum, jnp.asarray)(*args)


def _jax_max(*args):
    import jax.numpy as jnp

    return _pairwise("Max", jnp.maximum, jnp.asarray)(*args)


def _flatten_nested(data):
    """
    Handle SymPy Matrix objects returned as nested lists.

    SymPy's lambdify returns ImmutableDenseMatrix as nested lists:
    [[x], [y]] → Should become [x, y]
    """
    if isinstance(data, (list, tuple)):
        if len(data) > 0 and isinstance(data[0], (list, tuple)):
            return [
                item[0] if isinstance(item, (list, tuple)) and len(item) == 1 else item
                for item in data
            ]
        return data
    return data


def _jax_matrix_handler(data):
    """Stack lambdify's matrix rows into a single JAX array (traceable under jit)."""
    import jax.numpy as jnp

    data = _flatten_nested(data)
    if isinstance(data, (list, tuple)):
        return jnp.stack([jnp.asarray(e) for e in data])
    return data


def _lambdify_mapping(min_func: Callable, max_func: Callable, matrix_handler: Callable) -> dict:
    """Min/Max and every SymPy matrix class name a printed expression may reference."""
    mapping = {"Min": min_func, "Max": max_func}
    for matrix_class in ("ImmutableDenseMatrix", "MutableDenseMatrix", "Matrix"):
        mapping[matrix_class] = matrix_handler
    return mapping


SYMPY_TO_NUMPY_LAMBDIFY = _lambdify_mapping(
    _pairwise("Min", np.minimum), _pairwise("Max", np.maximum), _flatten_nested
)

SYMPY_TO_JAX_LAMBDIFY = _lambdify_mapping(_jax_min, _jax_max, _jax_matrix_handler)

# Functions with the same name in SymPy's printer output and in torch
_TORCH_ELEMENTWISE = (
    "sin cos tan asin acos atan atan2 sinh cosh tanh exp log sqrt "
    "abs sign floor ceil round minimum maximum"
).split()


def sympy_to_torch_lambdify() -> Dict[str, Callable]:
    """
    PyTorch mapping for lambdify.

    Built on demand so that importing this module does not require PyTorch.
    """
    import torch

    mapping = {name: getattr(torch, name) for name in _TORCH_ELEMENTWISE}
    mapping.update(Abs=torch.abs, Pow=torch.pow, clip=torch.clamp)
    mapping.update(
        _lambdify_mapping(
            _pairwise("Min", torch.minimum, _torch_tensor),
            _pairwise("Max", torch.maximum, _torch_tensor),
            _flatten_nested,
        )
    )
    return mapping


def _as_matrix(expr: Union[sp.Expr, list, sp.MatrixBase]) -> sp.MatrixBase:
    """Convert expression input to a SymPy matrix for consistent handling."""
    if isinstance(expr, list):
        return sp.Matrix(expr)
    if not isinstance(expr, sp.MatrixBase):
        return sp.Matrix([expr])
    return expr


# Output normalization: every generated function returns a flat 1-D array


def _flat_numpy(result) -> np.ndarray:
    """Scalar expr → (1,), vector expr → (n,), matrix expr → (m*n,) row-major."""
    if isinstance(result, sp.MatrixBase):
        result = list(result)
    if isinstance(result, (list, tuple)):
        result = _flatten_nested(list(result))
    return np.asarray(result, dtype=float).reshape(-1)


def _flat_torch(result):
    """Same as _flat_numpy, keeping tensors (and their gradients) as tensors."""
    import torch

    if isinstance(result, torch.Tensor):
        return result.reshape(-1)
    if isinstance(result, (list, tuple)):
        parts = [
            torch.as_tensor(item, dtype=torch.float64).reshape(-1)
            if not isinstance(item, torch.Tensor)
            else item.reshape(-1)
            for item in _flatten_nested(list(result))
        ]
        return parts[0] if len(parts) == 1 else torch.cat(parts)
    return torch.tensor([result], dtype=torch.float64)


def _flat_jax(result):
    """Same as _flat_numpy with jnp arrays, so it can run under jit."""
    import jax.numpy as jnp

    if isinstance(result, sp.MatrixBase):
        result = list(result)
    if isinstance(result, (list, tuple)):
        arrays = [jnp.asarray(item).reshape(-1) for item in _flatten_nested(list(result))]
        if not arrays:
            raise ValueError("Empty result from lambdify")
        return jnp.concatenate(arrays)
    return jnp.asarray(result).reshape(-1)


def _lambdify_modules(backend: Backend) -> list:
    if backend == "numpy":
        return [SYMPY_TO_NUMPY_LAMBDIFY, "numpy"]
    if backend == "torch":
        return [sympy_to_torch_lambdify()]
    return [SYMPY_TO_JAX_LAMBDIFY, "jax"]


_FLATTENERS: Dict[str, Callable] = {"numpy": _flat_numpy, "torch": _flat_torch, "jax": _flat_jax}


def generate_function(
    expr: Union[sp.Expr, list, sp.Matrix],
    symbols: list,
    backend: Backend = "numpy",
    jit: bool = True,
) -> Callable:
    """
    Compile SymPy expression(s) into a function of ``symbols`` for a backend.

    Args:
        expr: SymPy expression, list of expressions, or Matrix
        symbols: Input symbols, in argument order
        backend: 'numpy', 'torch', or 'jax'
        jit: JIT-compile the function (JAX only, ignored otherwise)

    Returns:
        Function taking one scalar per symbol and returning a flat 1-D
        array of the backend (torch functions keep gradients)

    Raises:
        ValueError: If backend is unknown

    Examples:
        >>> x, y = sp.symbols('x y')
        >>> f = generate_function(sp.Matrix([x**2, x*y]), [x, y])
        >>> f(3.0, 4.0)
        array([ 9., 12.])
    """
    if backend not in _FLATTENERS:
        raise ValueError(f"Unknown backend: {backend}")

    func = sp.lambdify(symbols, _as_matrix(expr), modules=_lambdify_modules(backend))
    flatten = _FLATTENERS[backend]

    def wrapped_func(*args):
        return flatten(func(*args))

    if backend == "jax" and jit:
        import jax

        wrapped_func = jax.jit(wrapped_func)

    return wrapped_func


def generate_jacobian_function(
    expr: Union[sp.Expr, list, sp.Matrix],
    symbols: list,
    wrt_symbols: list,
    backend: Backend = "numpy",
    use_symbolic: bool = True,
    jit: bool = True,
) -> Callable:
    """
    Compile ∂expr/∂wrt_symbols as a function of ``symbols``.

    Args:
        expr: SymPy expression, list of expressions, or Matrix
        symbols: All input symbols, in argument order
        wrt_symbols: Symbols to differentiate with respect to
        backend: Target backend
        use_symbolic: True: SymPy Jacobian, compiled like any expression
            (flat, row-major). False: ``jax.jacobian`` of the compiled
            expression (JAX only), shape (len(expr), len(wrt_symbols)).
        jit: JIT-compile (JAX only)

    Raises:
        ValueError: If autodiff is requested for a backend other than JAX
    """
    expr = _as_matrix(expr)

    if use_symbolic:
        return generate_function(expr.jacobian(wrt_symbols), symbols, backend, jit=jit)

    if backend != "jax":
        raise ValueError("Automatic differentiation only supported for JAX backend")

    import jax
    import jax.numpy as jnp

    base_func = generate_function(expr, symbols, "jax", jit=False)
    positions = [symbols.index(s) for s in wrt_symbols]
    n_rows = len(expr)

    def jac_func(*args):
        def of_wrt(*wrt_values):
            full_args = list(args)
            for position, value in zip(positions, wrt_values):
                full_args[position] = value
            return base_func(*full_args)

        if not positions:
            return jnp.zeros((n_rows, 0))
        wrt_args = tuple(args[p] for p in positions)
        columns = jax.jacobian(of_wrt, argnums=tuple(range(len(positions))))(*wrt_args)
        return jnp.stack([jnp.reshape(c, (-1,)) for c in columns], axis=1)

    return jax.jit(jac_func) if jit else jac_func
