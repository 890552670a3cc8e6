"""Variance structure estimation

Under the EBMF model

y_ij ~ N((LF')_ij, 1 / tau_ij)

the ELBO, as a function of tau, depends on q(L), q(F) only through the
expected squared residuals r2_ij = E[(y_ij - (LF')_ij)^2]. The maximizer is
analytic when tau is constant, or varies by row or by column.

When tau_ij = a_i b_j (Kronecker), we alternate analytic updates to a and b
until the ELBO stops improving. Each alternation is O(np), and many may be
needed, so this is the slow path for large matrices.

When standard errors s_ij are known, tau_ij = 1 / s_ij^2 is fixed.

To avoid fitting near-zero residual variance, every estimated variance is
floored at min_var.

"""
import numpy as np
import ebmf.em

from ebmf.errors import InvalidInput, NumericDegeneracy

var_types = ('constant', 'by_row', 'by_column', 'kronecker', 'fixed')

def data_llik(r2, z, tau):
  """Return the expected log likelihood E[ln p(y | L, F, tau)]

  r2 - array-like [n, p]
  z - array-like [n, p] (1 denotes presence)
  tau - array-like broadcastable to [n, p]

  """
  tau = np.broadcast_to(tau, z.shape)
  return .5 * np.where(z, np.log(tau) - np.log(2 * np.pi) - tau * r2, 0).sum()

def _precision(count, ss, min_var):
  """Return count / ss, such that ss / count >= min_var

  Entries with no observations get precision 1 (they do not enter the ELBO).

  """
  count = np.asarray(count, dtype=float)
  ss = np.asarray(ss, dtype=float)
  with np.errstate(divide='ignore', invalid='ignore'):
    var = np.where(count > 0, ss / count, 1)
  return 1 / np.maximum(var, min_var)

def _kron_unpack(theta, n):
  return theta[:n], theta[n:]

def _kron_obj(theta, r2, z, **kwargs):
  a, b = _kron_unpack(theta, z.shape[0])
  return data_llik(r2, z, np.outer(a, b))

def _kron_update(theta, r2, z, min_var):
  a, b = _kron_unpack(theta, z.shape[0])
  zr2 = np.where(z, r2, 0)
  # Important: flooring each factor keeps each update a (constrained)
  # coordinate maximization
  a = _precision(z.sum(axis=1), zr2 @ b, min_var)
  b = _precision(z.sum(axis=0), zr2.T @ a, min_var)
  return np.hstack([a, b])

def estimate_tau(r2, z, var_type, s=None, init=None, min_var=1e-8, tol=1e-6, max_iters=10000):
  """Return variance parameters and precision tau

  tau is broadcastable to [n, p]. For var_type 'kronecker', the parameters are
  a tuple (a, b) where tau = outer(a, b), capped at 1 / min_var.

  r2 - array-like [n, p]
  z - array-like [n, p] (1 denotes presence)
  var_type - one of var_types
  s - array-like broadcastable to [n, p] (required for 'fixed')
  init - previous parameters (warm start for 'kronecker')
  min_var - floor on estimated variance
  tol - threshold for change in ELBO ('kronecker' convergence criterion)

  Raises NumericDegeneracy if the 'kronecker' iteration fails to converge.

  """
  n, p = z.shape
  if r2.shape != (n, p):
    raise InvalidInput(f'shape mismatch (r2): expected {(n, p)}, got {r2.shape}')
  zr2 = np.where(z, r2, 0)
  if var_type == 'constant':
    tau_par = _precision(z.sum(), zr2.sum(), min_var)
    return tau_par, tau_par
  elif var_type == 'by_row':
    tau_par = _precision(z.sum(axis=1), zr2.sum(axis=1), min_var)
    return tau_par, tau_par.reshape(-1, 1)
  elif var_type == 'by_column':
    tau_par = _precision(z.sum(axis=0), zr2.sum(axis=0), min_var)
    return tau_par, tau_par.reshape(1, -1)
  elif var_type == 'kronecker':
    # Important: starting from the better of the by row and by column solutions
    # guarantees the result is at least as good as both
    candidates = [
      np.hstack([_precision(z.sum(axis=1), zr2.sum(axis=1), min_var), np.ones(p)]),
      np.hstack([np.ones(n), _precision(z.sum(axis=0), zr2.sum(axis=0), min_var)]),
    ]
    if init is not None:
      candidates.append(np.hstack(init))
    init = max(candidates, key=lambda theta: _kron_obj(theta, zr2, z))
    try:
      theta, _ = ebmf.em.em(init, _kron_obj, _kron_update, r2=zr2, z=z, min_var=min_var,
                            max_iters=max_iters, tol=tol)
    except RuntimeError as e:
      raise NumericDegeneracy(f'Kronecker variance estimation failed: {e}') from e
    a, b = _kron_unpack(theta, n)
    return (a, b), np.minimum(np.outer(a, b), 1 / min_var)
  elif var_type == 'fixed':
    if s is None:
      raise InvalidInput('standard errors are required for fixed variance')
    s = np.broadcast_to(s, (n, p))
    tau = np.where(z, 1 / np.square(np.where(z, s, 1)), 1)
    return tau, tau
  else:
    raise InvalidInput(f'var_type must be one of {var_types}, got {var_type!r}')
