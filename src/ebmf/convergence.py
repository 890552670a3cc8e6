"""Convergence criteria

A criterion maps (curr, prev, k) to a non-negative number, which is compared
against a tolerance. k is the component being updated, or None when comparing
after a full sweep over all components. Criteria must not mutate the states,
and must return 0 when curr and prev are identical.

"""
import numpy as np

def default_tol(state):
  """Return the default tolerance for criteria on the ELBO scale"""
  n, p = state.shape
  return np.sqrt(np.finfo(float).eps) * n * p

def elbo_diff(curr, prev, k=None):
  """Return the absolute change in ELBO"""
  if curr.elbo == prev.elbo:
    return 0.
  return abs(curr.elbo - prev.elbo)

def _normalize(x):
  norm = np.linalg.norm(x, axis=0)
  norm[norm == 0] = 1
  return x / norm

def _max_chg(curr, prev, k):
  if k is not None:
    curr = curr[:,[k]]
    prev = prev[:,[k]]
  if curr.shape != prev.shape:
    return np.inf
  if curr.size == 0:
    return 0.
  return np.abs(_normalize(curr) - _normalize(prev)).max()

def l_diff(curr, prev, k=None):
  """Return the maximum absolute change in (unit norm) loadings"""
  return _max_chg(curr.l, prev.l, k)

def f_diff(curr, prev, k=None):
  """Return the maximum absolute change in (unit norm) factors"""
  return _max_chg(curr.f, prev.f, k)

def lf_diff(curr, prev, k=None):
  """Return the maximum absolute change in (unit norm) loadings or factors"""
  return max(l_diff(curr, prev, k), f_diff(curr, prev, k))

def report(stage, curr, prev, k, crit, verbose_fns=(), verbose=False):
  """Append a row to the trace of curr, and optionally print it

  verbose_fns - functions (curr, prev, k) -> scalar, evaluated at this
  comparison point

  """
  row = {'stage': stage, 'iter': curr.n_iter, 'k': k, 'n_components': curr.k,
         'elbo': curr.elbo, 'crit': crit}
  for fn in verbose_fns:
    row[getattr(fn, '__name__', repr(fn))] = fn(curr, prev, k)
  curr.trace.append(row)
  if verbose:
    extra = ' '.join(f'{v:.6g}' for v in list(row.values())[6:])
    print(f'{stage} [{curr.n_iter}] k={k}: {curr.elbo:.12g} {crit:.4g} {extra}')
  return row
