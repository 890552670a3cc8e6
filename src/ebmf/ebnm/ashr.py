"""EBNM via ashr::ash

This module requires rpy2 and the R package ashr, and must be imported
explicitly. The fitted prior is converted to a NormalMix, so that the result
satisfies the same contract as the solvers in ebmf.ebnm.

"""
import numpy as np
import rpy2.robjects
import rpy2.robjects.packages

from ebmf.ebnm.wrappers import EBNMResult, _check_args, mixture_sampler, normalmix

def _to_r(g):
  ashr = rpy2.robjects.packages.importr('ashr')
  return ashr.normalmix(
    rpy2.robjects.FloatVector(g.pi),
    rpy2.robjects.FloatVector(np.full(g.pi.shape, g.mode)),
    rpy2.robjects.FloatVector(g.sd))

def _from_r(g):
  mode = np.array(g.rx2('mean'))
  return normalmix(np.array(g.rx2('pi')), np.array(g.rx2('sd')), mode[0])

def ebnm_ash_r(x, s, g=None, fix_g=False, sampler=False, **kwargs):
  """Return posterior moments and marginal log likelihood assuming g is a
mixture of zero-centered normal distributions

  Wrap around ashr::ash.

  kwargs - arguments to ashr::ash

  """
  ashr = rpy2.robjects.packages.importr('ashr')
  x, s = _check_args(x, s)
  if g is not None:
    kwargs['g'] = _to_r(g)
    kwargs['fixg'] = fix_g
  fit = ashr.ash(rpy2.robjects.FloatVector(x), rpy2.robjects.FloatVector(s),
                 mixcompdist='normal', outputlevel=2, **kwargs)
  post_mean = np.array(fit.rx2('result').rx2('PosteriorMean'))
  post_sd = np.array(fit.rx2('result').rx2('PosteriorSD'))
  g = _from_r(fit.rx2('fitted_g'))
  llik = np.array(fit.rx2('loglik'))[0]
  if sampler:
    sampler = mixture_sampler(g, x, s)
  else:
    sampler = None
  return EBNMResult(post_mean, np.square(post_mean) + np.square(post_sd), g, llik, sampler)
