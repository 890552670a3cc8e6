"""EBNM via full data numerical optimization

All priors are represented as zero-centered normal mixtures g = sum_k pi_k
N(mode, sigma_k^2), where sigma_k = 0 denotes a point mass. This makes
posterior moments, marginal likelihoods, and posterior sampling generic over
the prior family.

"""
import collections
import numpy as np
import scipy.optimize as so
import scipy.special as sp
import scipy.stats as st
import ebmf.em

from ebmf.errors import InvalidInput, NumericDegeneracy

__all__ = [
  'EBNMResult',
  'NormalMix',
  'normalmix',
  'posterior',
  'mixture_sampler',
  'ebnm_point',
  'ebnm_normal',
  'ebnm_point_normal',
  'ebnm_normal_scale_mixture',
  'ebnm_ash',
]

EBNMResult = collections.namedtuple('EBNMResult', ['mean', 'second_moment', 'g', 'llik', 'sampler'])
NormalMix = collections.namedtuple('NormalMix', ['pi', 'sd', 'mode'])

def normalmix(pi, sd, mode=0):
  """Return a normal mixture prior

  pi - array-like [m,]
  sd - array-like [m,] (0 denotes a point mass)
  mode - scalar

  """
  pi = np.atleast_1d(np.array(pi, dtype=float))
  sd = np.atleast_1d(np.array(sd, dtype=float))
  if pi.shape != sd.shape:
    raise InvalidInput(f'shape mismatch (sd): expected {pi.shape}, got {sd.shape}')
  return NormalMix(pi, sd, float(mode))

def _check_args(x, s):
  x = np.array(x, dtype=float)
  if x.ndim != 1:
    raise InvalidInput(f'expected x with shape (n,), got {x.shape}')
  if not np.isfinite(x).all():
    raise InvalidInput('invalid value(s) in x')
  s = np.array(s, dtype=float)
  if s.shape != () and s.shape != x.shape:
    raise InvalidInput(f'shape mismatch (s): expected {x.shape}, got {s.shape}')
  if s.shape == ():
    s = np.ones(x.shape) * s
  # Important: s = inf is allowed, and denotes no information about theta
  if np.isnan(s).any() or (s <= 0).any():
    raise InvalidInput('standard errors must be positive')
  return x, s

def _log_component_lik(g, x, s):
  """Return ln pi_k + ln N(x_i; mode, sd_k^2 + s_i^2)

  Returns array [n, m]. s must be finite.

  """
  with np.errstate(divide='ignore'):
    log_pi = np.log(g.pi)
  scale = np.sqrt(np.square(g.sd).reshape(1, -1) + np.square(s).reshape(-1, 1))
  return log_pi + st.norm(loc=g.mode, scale=scale).logpdf(x.reshape(-1, 1))

def _mix_llik(g, x, s):
  """Return the marginal log likelihood of x under g"""
  obs = np.isfinite(s)
  if not obs.any():
    return 0.
  return sp.logsumexp(_log_component_lik(g, x[obs], s[obs]), axis=1).sum()

def _posterior_parts(g, x, s):
  """Return posterior mixture weights, component means, and component variances

  Each is array [n, m]. Observations with s_i = inf get the prior.

  """
  n = x.shape[0]
  sd2 = np.square(g.sd).reshape(1, -1)
  w = np.tile(g.pi, (n, 1))
  m = np.full(w.shape, g.mode)
  v = np.tile(sd2, (n, 1))
  llik = 0.
  obs = np.isfinite(s)
  if obs.any():
    s2 = np.square(s[obs]).reshape(-1, 1)
    logp = _log_component_lik(g, x[obs], s[obs])
    lse = sp.logsumexp(logp, axis=1, keepdims=True)
    w[obs] = np.exp(logp - lse)
    m[obs] = g.mode + sd2 / (sd2 + s2) * (x[obs].reshape(-1, 1) - g.mode)
    v[obs] = sd2 * s2 / (sd2 + s2)
    llik = lse.sum()
  return w, m, v, llik

def _posterior(g, x, s):
  w, m, v, llik = _posterior_parts(g, x, s)
  mean = (w * m).sum(axis=1)
  second_moment = (w * (m * m + v)).sum(axis=1)
  return mean, second_moment, llik

def posterior(g, x, s):
  """Return posterior mean, posterior second moment, and marginal log likelihood
of x under fixed prior g

  g - NormalMix
  x - array-like [n,]
  s - array-like [n,]

  """
  x, s = _check_args(x, s)
  return _posterior(g, x, s)

def mixture_sampler(g, x, s):
  """Return a function which draws from the posterior p(theta | x, s, g)

  The returned function takes (n_samples, seed=None) and returns array
  [n_samples, n].

  """
  x, s = _check_args(x, s)
  w, m, v, _ = _posterior_parts(g, x, s)
  cdf = np.cumsum(w, axis=1)
  sd = np.sqrt(v)
  idx = np.arange(x.shape[0])
  def draw(n_samples, seed=None):
    rng = np.random.default_rng(seed)
    u = rng.uniform(size=(n_samples, x.shape[0], 1)) * cdf[:,-1:]
    # Important: this picks the first component whose cdf exceeds u
    z = np.minimum((u > cdf).sum(axis=2), cdf.shape[1] - 1)
    return rng.normal(loc=m[idx, z], scale=sd[idx, z])
  return draw

def _result(g, x, s, sampler):
  mean, second_moment, llik = _posterior(g, x, s)
  if sampler:
    sampler = mixture_sampler(g, x, s)
  else:
    sampler = None
  return EBNMResult(mean, second_moment, g, llik, sampler)

def _best(candidates, x, s):
  """Return the candidate prior with the largest marginal likelihood

  Including the warm start and the point mass among the candidates makes
  estimation monotone with respect to both.

  """
  llik = [_mix_llik(g, x, s) for g in candidates]
  return candidates[int(np.argmax(llik))]

def _null():
  return normalmix([1.], [0.])

def _init_var(x, s):
  """Return a method of moments estimate of the prior variance"""
  return max((np.square(x) - np.square(s)).mean(), np.square(s).mean())

def ebnm_point(x, s, g=None, fix_g=False, sampler=False):
  """Return posterior moments and marginal log likelihood assuming g is a point
mass on zero

  x - array-like [n,]
  s - array-like [n,]

  """
  x, s = _check_args(x, s)
  if g is None or not fix_g:
    g = _null()
  return _result(g, x, s, sampler)

def _ebnm_normal_obj(par, x, s):
  return -st.norm(scale=np.sqrt(np.exp(par[0]) + s * s)).logpdf(x).sum()

def ebnm_normal(x, s, g=None, fix_g=False, sampler=False):
  """Return posterior moments and marginal log likelihood assuming g is a
zero-centered normal distribution

  x - array-like [n,]
  s - array-like [n,]
  g - NormalMix (initial value, or fixed prior if fix_g)

  """
  x, s = _check_args(x, s)
  if fix_g and g is not None:
    return _result(g, x, s, sampler)
  obs = np.isfinite(s)
  if not obs.any():
    return _result(_null() if g is None else g, x, s, sampler)
  xo, so_ = x[obs], s[obs]
  if g is not None and (g.pi * g.sd).sum() > 0:
    init = np.log((g.pi * np.square(g.sd)).sum())
  else:
    init = np.log(_init_var(xo, so_))
  opt = so.minimize(_ebnm_normal_obj, x0=[init], args=(xo, so_), method='L-BFGS-B', bounds=[(-60, 60)])
  candidates = [_null(), normalmix([1.], [np.exp(opt.x[0] / 2)])]
  if g is not None:
    candidates.append(g)
  return _result(_best(candidates, x, s), x, s, sampler)

def _ebnm_point_normal_obj(par, x, s):
  """Return negative marginal log likelihood

  x_i ~ N(theta_i, s_i^2)
  theta_i ~ g = sigmoid(-logodds) \\delta_0(.) + sigmoid(logodds) N(0, exp(log_var))

  """
  logodds, log_var = par
  case_zero = -np.logaddexp(0, logodds) + st.norm(scale=s).logpdf(x)
  case_nonzero = -np.logaddexp(0, -logodds) + st.norm(scale=np.sqrt(np.exp(log_var) + s * s)).logpdf(x)
  return -np.logaddexp(case_zero, case_nonzero).sum()

def ebnm_point_normal(x, s, g=None, fix_g=False, sampler=False):
  """Return posterior moments and marginal log likelihood assuming g is a
mixture of a point mass on zero and a zero-centered normal distribution

  x - array-like [n,]
  s - array-like [n,]
  g - NormalMix (initial value, or fixed prior if fix_g)

  """
  x, s = _check_args(x, s)
  if fix_g and g is not None:
    return _result(g, x, s, sampler)
  obs = np.isfinite(s)
  if not obs.any():
    return _result(_null() if g is None else g, x, s, sampler)
  xo, so_ = x[obs], s[obs]
  if g is not None and g.pi.shape == (2,) and g.sd[1] > 0 and 0 < g.pi[1] < 1:
    init = np.array([sp.logit(g.pi[1]), 2 * np.log(g.sd[1])])
  else:
    init = np.array([0., np.log(_init_var(xo, so_))])
  opt = so.minimize(_ebnm_point_normal_obj, x0=init, args=(xo, so_), method='L-BFGS-B',
                    bounds=[(-30, 30), (-60, 60)])
  logodds, log_var = opt.x
  candidates = [_null(), normalmix([sp.expit(-logodds), sp.expit(logodds)], [0., np.exp(log_var / 2)])]
  if g is not None:
    candidates.append(g)
  return _result(_best(candidates, x, s), x, s, sampler)

def _grid(x, s, mult=np.sqrt(2)):
  """Return a grid of prior standard deviations (Stephens 2017)"""
  sd_min = s.min() / 10
  sd_max = 2 * np.sqrt(max((np.square(x) - np.square(s)).max(), 0))
  if sd_max <= sd_min:
    sd_max = 8 * sd_min
  m = int(np.ceil(np.log2(sd_max / sd_min) / np.log2(mult)))
  return np.hstack([0, sd_max * mult ** np.arange(-m, 1)])

def _mix_obj(pi, ld):
  if (pi < 0).any() or not pi.sum() > 0:
    return -np.inf
  # Important: extrapolated steps can leave the simplex by rounding, and an
  # unnormalized pi would overstate the objective
  pi = pi / pi.sum()
  with np.errstate(divide='ignore'):
    return sp.logsumexp(np.log(pi) + ld, axis=1).sum()

def _mix_update(pi, ld):
  with np.errstate(divide='ignore'):
    logp = np.log(np.clip(pi, 0, None)) + ld
  return np.exp(logp - sp.logsumexp(logp, axis=1, keepdims=True)).mean(axis=0)

def ebnm_normal_scale_mixture(x, s, g=None, fix_g=False, sampler=False, grid=None, max_iters=10000, tol=1e-6, extrapolate=True):
  """Return posterior moments and marginal log likelihood assuming g is a
mixture of zero-centered normal distributions on a fixed grid of standard
deviations (Stephens 2017)

  Mixture weights are estimated by (SQUAR)EM. If the iteration fails, raise
  NumericDegeneracy.

  x - array-like [n,]
  s - array-like [n,]
  g - NormalMix (initial value, or fixed prior if fix_g)
  grid - array-like [m,] prior standard deviations (default: chosen from x, s)

  """
  x, s = _check_args(x, s)
  if fix_g and g is not None:
    return _result(g, x, s, sampler)
  obs = np.isfinite(s)
  if not obs.any():
    return _result(_null() if g is None else g, x, s, sampler)
  xo, so_ = x[obs], s[obs]
  if grid is not None:
    sd = np.array(grid, dtype=float)
    init = np.ones(sd.shape) / sd.shape[0]
  elif g is not None and g.pi.shape[0] > 1:
    # Important: warm start on the previous grid, but don't start with zero
    # weights, which EM can't move
    sd = g.sd
    init = (g.pi + 1e-3) / (g.pi + 1e-3).sum()
  else:
    sd = _grid(xo, so_)
    init = np.ones(sd.shape) / sd.shape[0]
  ld = st.norm(scale=np.sqrt(np.square(sd).reshape(1, -1) + np.square(so_).reshape(-1, 1))).logpdf(xo.reshape(-1, 1))
  try:
    if extrapolate:
      pi, _ = ebmf.em.squarem(init, _mix_obj, _mix_update, ld=ld, max_iters=max_iters, tol=tol)
    else:
      pi, _ = ebmf.em.em(init, _mix_obj, _mix_update, ld=ld, max_iters=max_iters, tol=tol)
  except RuntimeError as e:
    raise NumericDegeneracy(f'mixture weight estimation failed: {e}') from e
  pi = np.clip(pi, 0, None)
  candidates = [_null(), normalmix(pi / pi.sum(), sd)]
  if g is not None:
    candidates.append(g)
  return _result(_best(candidates, x, s), x, s, sampler)

ebnm_ash = ebnm_normal_scale_mixture
