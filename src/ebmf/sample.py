"""Posterior sampling from a fitted EBMF model

For each component, we solve the EBNM problem at the fitted state with the
prior fixed, and draw from the resulting posterior. This ignores dependence
between L and F under the true posterior (as does the variational
approximation).

"""
import numpy as np

from ebmf.update import pseudo_obs

def _fixed(x):
  def draw(n_samples, seed=None):
    return np.tile(x, (n_samples, 1))
  return draw

def _side_samplers(state, side):
  if side == 'l':
    m, fix, g, solver = state.l, state.fix_l, state.gl, state.ebnm_l
  else:
    m, fix, g, solver = state.f, state.fix_f, state.gf, state.ebnm_f
  result = []
  for k in range(state.k):
    if fix[k] or g[k] is None:
      result.append(_fixed(m[:,k]))
    else:
      x, s = pseudo_obs(state, k, side)
      result.append(solver[k](x, s, g=g[k], fix_g=True, sampler=True).sampler)
  return result

def sampler(state):
  """Return a function which draws loadings and factors from the posterior

  The returned function takes (n_samples, seed=None), and returns arrays
  [n_samples, n, K] and [n_samples, p, K].

  """
  l_draws = _side_samplers(state, 'l')
  f_draws = _side_samplers(state, 'f')
  n, p = state.shape
  def draw(n_samples, seed=None):
    rng = np.random.default_rng(seed)
    if not l_draws:
      return np.zeros((n_samples, n, 0)), np.zeros((n_samples, p, 0))
    l = np.stack([d(n_samples, rng) for d in l_draws], axis=-1)
    f = np.stack([d(n_samples, rng) for d in f_draws], axis=-1)
    return l, f
  return draw

def sample_fitted(state, n_samples, seed=None):
  """Return draws of LF' from the posterior [n_samples, n, p]"""
  l, f = sampler(state)(n_samples, seed)
  return np.einsum('snk,spk->snp', l, f)
