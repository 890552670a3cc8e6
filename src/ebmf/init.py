"""Initialize components from explicit loadings and factors

Each function returns a new state, leaving the argument unchanged.

"""
import numpy as np

from ebmf.errors import InvalidInput
from ebmf.update import update_f, update_l

def _as_columns(x, name):
  x = np.array(x, dtype=float)
  if x.ndim == 1:
    x = x.reshape(-1, 1)
  elif x.ndim != 2:
    raise InvalidInput(f'expected {name} with 1 or 2 dimensions, got {x.shape}')
  return x

def add_components(state, l, f, fix_l=False, fix_f=False, ebnm_fn=None):
  """Return a new state with components l, f appended

  Each new component is updated once, so the returned state has fitted priors
  and a consistent ELBO.

  l - array-like [n, m] or [n,]
  f - array-like [p, m] or [p,]
  fix_l - hold loadings fixed at l
  fix_f - hold factors fixed at f
  ebnm_fn - EBNM solver, or pair of solvers (default: state.ebnm_fn)

  """
  l = _as_columns(l, 'l')
  f = _as_columns(f, 'f')
  state = state.copy()
  k0 = state.k
  state.append(l, f, fix_l=fix_l, fix_f=fix_f, ebnm_fn=ebnm_fn)
  for k in range(k0, state.k):
    update_l(state, k)
    update_f(state, k)
  return state.update_tau()

def init_from_lf(state, l, f, ebnm_fn=None):
  """Return a new state seeded with loadings l [n, K] and factors f [p, K]"""
  return add_components(state, l, f, ebnm_fn=ebnm_fn)

def init_from_svd(state, u, d, v, ebnm_fn=None):
  """Return a new state seeded with a (truncated) SVD

  u - array-like [n, K] left singular vectors
  d - array-like [K,] singular values
  v - array-like [p, K] right singular vectors

  """
  u = _as_columns(u, 'u')
  v = _as_columns(v, 'v')
  d = np.atleast_1d(np.array(d, dtype=float))
  if d.ndim != 1 or u.shape[1] != d.shape[0] or v.shape[1] != d.shape[0]:
    raise InvalidInput(f'shape mismatch (u, d, v): got {u.shape}, {d.shape}, {v.shape}')
  if (d < 0).any():
    raise InvalidInput('singular values must be non-negative')
  return add_components(state, u * np.sqrt(d), v * np.sqrt(d), ebnm_fn=ebnm_fn)

def add_fixed(state, l=None, f=None, ebnm_fn=None):
  """Return a new state with one component whose loadings (or factors) are
fixed

  For example, add_fixed(state, l=np.ones(n)) adds an intercept. The other side
  is initialized by least squares against the current residual.

  """
  if (l is None) == (f is None):
    raise InvalidInput('exactly one of l, f must be specified')
  r = np.where(state.z, state.y - state.fitted(), 0)
  w = np.where(state.z, np.broadcast_to(state.tau, state.shape), 0)
  if l is not None:
    l = np.array(l, dtype=float).ravel()
    if l.shape != (state.shape[0],):
      raise InvalidInput(f'shape mismatch (l): expected {(state.shape[0],)}, got {l.shape}')
    den = w.T @ np.square(l)
    with np.errstate(divide='ignore', invalid='ignore'):
      f = np.where(den > 0, (w * r).T @ l / den, 0)
    return add_components(state, l, f, fix_l=True, ebnm_fn=ebnm_fn)
  else:
    f = np.array(f, dtype=float).ravel()
    if f.shape != (state.shape[1],):
      raise InvalidInput(f'shape mismatch (f): expected {(state.shape[1],)}, got {f.shape}')
    den = w @ np.square(f)
    with np.errstate(divide='ignore', invalid='ignore'):
      l = np.where(den > 0, (w * r) @ f / den, 0)
    return add_components(state, l, f, fix_f=True, ebnm_fn=ebnm_fn)
