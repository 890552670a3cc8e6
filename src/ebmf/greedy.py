"""Greedy addition of rank-one components

Starting from the current fit, repeatedly

1. initialize a rank-one component from the residual,
2. alternate updates to q(l_k), g_lk, then q(f_k), g_fk, then tau, until the
   convergence criterion passes,
3. keep the component if it increased the ELBO, else stop.

"""
import numpy as np
import sklearn.utils.extmath as ske
import warnings

from ebmf.convergence import default_tol, elbo_diff, report
from ebmf.errors import NumericDegeneracy, NumericDegeneracyWarning
from ebmf.update import update_f, update_l

def _frob_loss(x, lf, w=None):
  """Return the (weighted) squared Frobenius norm \\sum_{ij} w_{ij} (x_{ij} -
  (LF)_{ij})^2

  """
  if w is None:
    w = 1
  return (w * np.square(x - lf)).sum()

def init_rank_one(r, z, seed=0, max_iters=100, atol=1e-8):
  """Return loadings [n,] and factors [p,] of a rank-one approximation to r

  Use a truncated SVD of r (setting missing entries to 0). To handle missing
  data, refine by alternating weighted least squares.

  r - array-like [n, p]
  z - array-like [n, p] (1 denotes presence)

  """
  r = np.where(z, r, 0)
  if not r.any():
    return np.zeros(r.shape[0]), np.zeros(r.shape[1])
  u, d, vt = ske.randomized_svd(r, n_components=1, random_state=seed)
  l = u[:,0] * np.sqrt(d[0])
  f = vt[0] * np.sqrt(d[0])
  if z.all():
    return l, f
  w = z.astype(float)
  obj = _frob_loss(r, np.outer(l, f), w=w)
  for i in range(max_iters):
    with np.errstate(divide='ignore', invalid='ignore'):
      den = w @ np.square(f)
      l = np.where(den > 0, (r @ f) / den, 0)
      den = w.T @ np.square(l)
      f = np.where(den > 0, (r.T @ l) / den, 0)
    update = _frob_loss(r, np.outer(l, f), w=w)
    # Important: the updates are monotonic
    if np.isclose(update, obj, atol=atol):
      break
    obj = update
  return l, f

def _fit_rank_one(state, l, f, ebnm_fn, conv_crit, tol, max_iters, verbose, verbose_fns):
  """Return the state with one new component, and whether the alternation
converged

  """
  curr = state.copy()
  curr.append(l.reshape(-1, 1), f.reshape(-1, 1), ebnm_fn=ebnm_fn)
  k = curr.k - 1
  for i in range(max_iters):
    prev = curr.copy()
    update_l(curr, k)
    update_f(curr, k)
    curr.update_tau()
    curr.n_iter += 1
    crit = conv_crit(curr, prev, k)
    report('greedy', curr, prev, k, crit, verbose_fns=verbose_fns, verbose=verbose)
    if crit < tol:
      return curr, True
  return curr, False

def fit_greedy(state, max_k=None, ebnm_fn=None, conv_crit=elbo_diff, tol=None,
               max_iters=500, seed=0, verbose=False, verbose_fns=()):
  """Return a new state with components added greedily

  Stops when a new component does not increase the ELBO, when the fit has
  max_k components, or when the residual is degenerate. A component whose
  updates did not converge in max_iters is kept if it increased the ELBO, but
  stops greedy addition (status 'max_iters').

  state - FitState
  max_k - maximum number of components in the fit (default: no limit)
  ebnm_fn - EBNM solver, or pair of solvers, for new components
  conv_crit - convergence criterion (curr, prev, k) -> scalar
  tol - threshold for conv_crit (default: convergence.default_tol)
  max_iters - maximum number of updates per component
  seed - random seed for rank-one initialization

  """
  state = state.copy()
  state.status = None
  if tol is None:
    tol = default_tol(state)
  while max_k is None or state.k < max_k:
    l, f = init_rank_one(state.y - state.fitted(), state.z, seed=seed + state.k)
    if not l.any() or not f.any():
      if verbose:
        print(f'greedy [{state.n_iter}]: degenerate residual')
      state.status = 'converged'
      break
    try:
      curr, converged = _fit_rank_one(state, l, f, ebnm_fn, conv_crit, tol,
                                      max_iters, verbose, verbose_fns)
    except NumericDegeneracy as e:
      warnings.warn(f'greedy addition stopped at {state.k} components: {e}', NumericDegeneracyWarning)
      state.status = 'degenerate'
      break
    k = curr.k - 1
    gain = curr.elbo - state.elbo
    accept = gain > 0 and curr.l[:,k].any() and curr.f[:,k].any()
    if verbose:
      print(f'greedy [{curr.n_iter}]: component {k} {"accepted" if accept else "rejected"} ({gain:.4g})')
    if accept:
      # Important: the trace of the rejected component is discarded with it
      state = curr
    if not converged:
      state.status = 'max_iters'
      break
    elif not accept:
      state.status = 'converged'
      break
  else:
    state.status = 'converged'
  return state
