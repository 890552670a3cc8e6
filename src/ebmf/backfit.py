"""Backfitting: coordinate ascent over all components

In sequential mode, we update each component (loadings, factors, then tau)
in turn, checking the convergence criterion after each update.

In extrapolated mode, we treat a full sweep over all components as one step
of a fixed-point iteration, and accelerate it by momentum: the next step
starts from

curr + beta (curr - prev)

(the first and second moments of non-fixed columns). A full sweep from the
extrapolated point restores a consistent state. If its ELBO does not improve
on a plain sweep from the current state, we reject it, keep the plain sweep,
and shrink beta; otherwise we grow beta (up to beta_max). Rejection keeps the
ELBO non-decreasing.

"""
import numpy as np
import warnings

from ebmf.convergence import default_tol, elbo_diff, report
from ebmf.errors import NumericDegeneracy, NumericDegeneracyWarning
from ebmf.update import update_f, update_l

def _sweep(state):
  """Update every component, then tau, in place"""
  for k in range(state.k):
    update_l(state, k)
    update_f(state, k)
  return state.update_tau()

def _extrapolate(curr, prev, beta):
  """Return a copy of curr with moments of non-fixed columns extrapolated

  The ELBO of the returned state is not updated, because every extrapolated
  column is immediately updated by _sweep.

  """
  proposal = curr.copy()
  for m, m2, fix in (('l', 'l2', curr.fix_l), ('f', 'f2', curr.fix_f)):
    free = ~fix
    x = getattr(curr, m)[:,free] + beta * (getattr(curr, m) - getattr(prev, m))[:,free]
    x2 = getattr(curr, m2)[:,free] + beta * (getattr(curr, m2) - getattr(prev, m2))[:,free]
    # Important: second moments must dominate squared first moments
    getattr(proposal, m)[:,free] = x
    getattr(proposal, m2)[:,free] = np.maximum(x2, np.square(x))
  return proposal

def _propose(state, old, beta):
  """Return the swept extrapolated state, or None if it is not usable"""
  try:
    return _sweep(_extrapolate(state, old, beta))
  except NumericDegeneracy:
    # Important: a degenerate proposal is rejected like any other which does
    # not improve the ELBO
    return None

def backfit(state, extrapolate=True, conv_crit=elbo_diff, tol=None, max_iters=500,
            beta_init=0.5, beta_increase=1.2, beta_reduce=0.5, beta_max=2.0,
            verbose=False, verbose_fns=()):
  """Return a new state with all components re-optimized

  Reaching max_iters is reported as status 'max_iters', not an error. If an
  update is numerically degenerate, warn and return the last valid state
  (status 'degenerate').

  state - FitState
  extrapolate - use extrapolated sweeps (else sequential updates)
  conv_crit - convergence criterion (curr, prev, k) -> scalar
  tol - threshold for conv_crit (default: convergence.default_tol)
  max_iters - maximum number of sweeps
  beta_init - initial extrapolation coefficient
  beta_increase - factor to grow beta after accepting an extrapolation
  beta_reduce - factor to shrink beta after rejecting an extrapolation
  beta_max - maximum extrapolation coefficient

  """
  state = state.copy()
  state.status = None
  if tol is None:
    tol = default_tol(state)
  if state.k == 0 or (state.fix_l & state.fix_f).all():
    state.status = 'converged'
    return state
  if extrapolate:
    return _backfit_extrapolate(state, conv_crit, tol, max_iters, beta_init,
                                beta_increase, beta_reduce, beta_max, verbose, verbose_fns)
  else:
    return _backfit_sequential(state, conv_crit, tol, max_iters, verbose, verbose_fns)

def _backfit_sequential(state, conv_crit, tol, max_iters, verbose, verbose_fns):
  active = [k for k in range(state.k) if not (state.fix_l[k] and state.fix_f[k])]
  for i in range(max_iters):
    converged = True
    for k in active:
      prev = state.copy()
      try:
        update_l(state, k)
        update_f(state, k)
        state.update_tau()
      except NumericDegeneracy as e:
        warnings.warn(f'backfit stopped at component {k}: {e}', NumericDegeneracyWarning)
        prev.status = 'degenerate'
        return prev
      state.n_iter += 1
      crit = conv_crit(state, prev, k)
      report('backfit', state, prev, k, crit, verbose_fns=verbose_fns, verbose=verbose)
      converged = converged and crit < tol
    if converged:
      state.status = 'converged'
      break
  else:
    state.status = 'max_iters'
  return state

def _backfit_extrapolate(state, conv_crit, tol, max_iters, beta_init, beta_increase,
                         beta_reduce, beta_max, verbose, verbose_fns):
  beta = beta_init
  old = None
  for i in range(max_iters):
    try:
      new = _sweep(state.copy())
    except NumericDegeneracy as e:
      warnings.warn(f'backfit stopped: {e}', NumericDegeneracyWarning)
      state.status = 'degenerate'
      return state
    if old is not None:
      proposal = _propose(state, old, beta)
      if proposal is not None and proposal.elbo > new.elbo:
        new = proposal
        beta = min(beta * beta_increase, beta_max)
      else:
        beta *= beta_reduce
    new.n_iter += 1
    crit = conv_crit(new, state, None)
    report('backfit', new, state, None, crit, verbose_fns=verbose_fns, verbose=verbose)
    old, state = state, new
    if crit < tol:
      state.status = 'converged'
      break
  else:
    state.status = 'max_iters'
  return state
