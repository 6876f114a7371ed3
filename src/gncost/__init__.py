# Copyright (C) 2025 Gil Benezer
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""
gncost - Gauss-Newton cost models from symbolic residuals.

Costs are written as residual vectors with SymPy; gncost generates,
caches and compiles residual/Jacobian models for NumPy, PyTorch or JAX
and assembles Gauss-Newton quadratic approximations from them.

>>> import gncost
>>> cost = gncost.GaussNewtonCostAD(
...     gncost.FunctionResidualStrategy(lambda t, x, u, p: [x[0] - u[0]]),
...     state_dim=1,
...     input_dim=1,
... )
>>> cost.initialize('tracking', verbose=False)
"""

__version__ = "0.1.0"

from gncost.ad import (
    FileSystemModelCache,
    InMemoryModelCache,
    ModelCache,
    ModelLoadError,
    ResidualModel,
    ValidationError,
)
from gncost.cost import (
    CostFunctionBase,
    FunctionResidualStrategy,
    GaussNewtonCostAD,
    LinearResidual,
    QuadraticTrackingResidual,
    ResidualStrategy,
)
from gncost.types import EvaluationRecord, ScalarFunctionQuadraticApproximation

__all__ = [
    "__version__",
    "GaussNewtonCostAD",
    "CostFunctionBase",
    "ResidualStrategy",
    "FunctionResidualStrategy",
    "QuadraticTrackingResidual",
    "LinearResidual",
    "ResidualModel",
    "ModelCache",
    "FileSystemModelCache",
    "InMemoryModelCache",
    "ModelLoadError",
    "ValidationError",
    "ScalarFunctionQuadraticApproximation",
    "EvaluationRecord",
]
