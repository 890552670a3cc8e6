"""Coordinate updates to one column of L or F

Holding everything else fixed, the ELBO as a function of (q(l_k), g_lk) is,
up to a constant, the marginal log likelihood of the EBNM problem

x_i ~ N(l_ik, s_i^2)
l_ik ~ g_lk(.)

where

s_i^{-2} = \\sum_j z_ij tau_ij E[f_jk^2]
x_i = s_i^2 \\sum_j z_ij tau_ij r_ij E[f_jk]

and r is the residual excluding component k (Wang and Stephens 2021).
Therefore, each update delegates to an EBNM solver, and the ELBO is
non-decreasing as long as the solver does not return a worse prior than its
warm start. Updates to F are symmetric.

"""
import numpy as np

from ebmf.errors import NumericDegeneracy

def _views(state, side):
  """Return (y, z * tau, m, m2, other, other2) oriented so that rows index
the side being updated

  """
  zt = np.where(state.z, np.broadcast_to(state.tau, state.shape), 0)
  if side == 'l':
    return state.y, zt, state.l, state.l2, state.f, state.f2
  elif side == 'f':
    return state.y.T, zt.T, state.f, state.f2, state.l, state.l2
  else:
    raise ValueError(f'side must be l or f, got {side!r}')

def pseudo_obs(state, k, side):
  """Return EBNM observations and standard errors for column k of L ('l') or
F ('f')

  Rows with no information get s_i = inf.

  """
  y, zt, m, _, other, other2 = _views(state, side)
  r = y - m @ other.T + np.outer(m[:,k], other[:,k])
  prec = zt @ other2[:,k]
  with np.errstate(divide='ignore', invalid='ignore'):
    s = np.where(prec > 0, 1 / np.sqrt(prec), np.inf)
    x = np.where(prec > 0, ((zt * r) @ other[:,k]) / prec, 0)
  return x, s

def neg_kl(res, x, s):
  """Return -KL(q || g) from an EBNM solution

  -KL(q || g) = ln p(x | g) - E_q[ln p(x | theta)]

  """
  obs = np.isfinite(s)
  x, s = x[obs], s[obs]
  mean, second_moment = res.mean[obs], res.second_moment[obs]
  e_llik = (-.5 * np.log(2 * np.pi * s * s)
            - .5 * (x * x - 2 * x * mean + second_moment) / (s * s)).sum()
  return res.llik - e_llik

def _update(state, k, side):
  if side == 'l':
    fixed, solver, g = state.fix_l[k], state.ebnm_l[k], state.gl[k]
  else:
    fixed, solver, g = state.fix_f[k], state.ebnm_f[k], state.gf[k]
  if fixed:
    return state
  x, s = pseudo_obs(state, k, side)
  res = solver(x, s, g=g)
  kl = neg_kl(res, x, s)
  if not np.isfinite(res.llik) or not np.isfinite(kl):
    raise NumericDegeneracy(f'non-finite EBNM log likelihood (component {k}, side {side})')
  if not np.isfinite(res.mean).all() or not np.isfinite(res.second_moment).all():
    raise NumericDegeneracy(f'non-finite posterior moments (component {k}, side {side})')
  # Important: only write back after the solver succeeded, so a failed update
  # leaves the state as it was
  if side == 'l':
    state.l[:,k] = res.mean
    state.l2[:,k] = res.second_moment
    state.gl[k] = res.g
    state.kl_l[k] = kl
  else:
    state.f[:,k] = res.mean
    state.f2[:,k] = res.second_moment
    state.gf[k] = res.g
    state.kl_f[k] = kl
  return state.update_elbo()

def update_l(state, k):
  """Update q(l_k), g_lk in place, and return the state"""
  return _update(state, k, 'l')

def update_f(state, k):
  """Update q(f_k), g_fk in place, and return the state"""
  return _update(state, k, 'f')

def update_tau(state):
  """Update the variance parameters in place, and return the state"""
  return state.update_tau()
