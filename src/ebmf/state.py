"""Mutable state of an EBMF fit

The state holds the first and second posterior moments of L [n, K] and F
[p, K], the fitted priors, the per-component -KL(q || g) terms, and the
variance parameters. The ELBO is

\\sum_k (-KL(q(l_k) || g_lk) - KL(q(f_k) || g_fk)) + E[ln p(Y | L, F, tau)]

and is recomputed after every mutation.

Missing entries of y are denoted by nan, and are excluded from the likelihood
using weights z_ij (indicators of non-missingness), as in ebmf.variance.

"""
import copy
import numpy as np
import pandas as pd
import ebmf.ebnm

from ebmf.errors import InvalidInput, NumericDegeneracy
from ebmf.variance import data_llik, estimate_tau, var_types

def _split_ebnm(ebnm_fn):
  """Return EBNM solvers for loadings and factors"""
  if isinstance(ebnm_fn, (tuple, list)):
    ebnm_l, ebnm_f = ebnm_fn
  else:
    ebnm_l = ebnm_f = ebnm_fn
  if not callable(ebnm_l) or not callable(ebnm_f):
    raise InvalidInput('ebnm_fn must be callable, or a pair of callables')
  return ebnm_l, ebnm_f

class FitState:
  """EBMF fit

  y - array-like [n, p] (nan denotes missing)
  s - array-like broadcastable to [n, p] (standard errors; requires var_type 'fixed')
  var_type - one of 'constant', 'by_row', 'by_column', 'kronecker', 'fixed'
  ebnm_fn - EBNM solver for new components, or a pair (loadings, factors)
  min_var - floor on estimated residual variance

  """
  def __init__(self, y, s=None, var_type='constant', ebnm_fn=None, min_var=1e-8):
    y = np.array(y, dtype=float)
    if y.ndim != 2:
      raise InvalidInput(f'expected y with shape (n, p), got {y.shape}')
    if np.isinf(y).any():
      raise InvalidInput('invalid value(s) in y')
    if var_type not in var_types:
      raise InvalidInput(f'var_type must be one of {var_types}, got {var_type!r}')
    n, p = y.shape
    self.z = ~np.isnan(y)
    if not self.z.any():
      raise InvalidInput('y has no observed entries')
    if var_type == 'fixed':
      if s is None:
        raise InvalidInput('standard errors are required for fixed variance')
      s = np.array(s, dtype=float)
      try:
        s = np.broadcast_to(s, (n, p))
      except ValueError:
        raise InvalidInput(f'shape mismatch (s): expected broadcastable to {(n, p)}, got {s.shape}')
      obs = s[self.z]
      if not np.isfinite(obs).all() or (obs <= 0).any():
        raise InvalidInput('standard errors must be positive and finite')
    elif s is not None:
      raise InvalidInput('standard errors are only supported with var_type fixed')
    if ebnm_fn is None:
      ebnm_fn = ebmf.ebnm.ebnm_point_normal
    _split_ebnm(ebnm_fn)
    self.y = np.where(self.z, y, 0)
    self.s = s
    self.var_type = var_type
    self.ebnm_fn = ebnm_fn
    self.min_var = min_var
    self.l = np.zeros((n, 0))
    self.f = np.zeros((p, 0))
    self.l2 = np.zeros((n, 0))
    self.f2 = np.zeros((p, 0))
    self.gl = []
    self.gf = []
    self.ebnm_l = []
    self.ebnm_f = []
    self.kl_l = np.zeros(0)
    self.kl_f = np.zeros(0)
    self.fix_l = np.zeros(0, dtype=bool)
    self.fix_f = np.zeros(0, dtype=bool)
    self.tau_par = None
    self.tau = None
    self.llik = None
    self.elbo = None
    self.n_iter = 0
    self.status = None
    self.trace = []
    self.removed = []
    self.update_tau()

  @property
  def shape(self):
    return self.y.shape

  @property
  def k(self):
    return self.l.shape[1]

  @property
  def kl(self):
    """Return the contribution of each component to the ELBO"""
    return self.kl_l + self.kl_f

  def copy(self):
    """Return a snapshot which shares the data, but nothing mutable"""
    other = copy.copy(self)
    for attr in ('l', 'f', 'l2', 'f2', 'kl_l', 'kl_f', 'fix_l', 'fix_f'):
      setattr(other, attr, getattr(self, attr).copy())
    for attr in ('gl', 'gf', 'ebnm_l', 'ebnm_f', 'trace', 'removed'):
      setattr(other, attr, list(getattr(self, attr)))
    return other

  def fitted(self):
    return self.l @ self.f.T

  def expected_sq_resid(self):
    """Return E[(y_ij - (LF')_ij)^2] for observed entries, and 0 otherwise"""
    r2 = (np.square(self.y - self.fitted())
          + self.l2 @ self.f2.T
          - np.square(self.l) @ np.square(self.f).T)
    # Important: second moments can be numerically smaller than squared first
    # moments
    return np.where(self.z, np.maximum(r2, 0), 0)

  def update_elbo(self, r2=None):
    if r2 is None:
      r2 = self.expected_sq_resid()
    self.llik = data_llik(r2, self.z, self.tau)
    self.elbo = self.llik + self.kl_l.sum() + self.kl_f.sum()
    if not np.isfinite(self.elbo):
      raise NumericDegeneracy(f'non-finite ELBO ({self.elbo})')
    return self

  def update_tau(self):
    """Re-estimate the variance parameters, and update the ELBO"""
    r2 = self.expected_sq_resid()
    if self.var_type == 'kronecker':
      init = self.tau_par
    else:
      init = None
    self.tau_par, self.tau = estimate_tau(r2, self.z, self.var_type, s=self.s,
                                          init=init, min_var=self.min_var)
    return self.update_elbo(r2)

  def append(self, l, f, fix_l=False, fix_f=False, ebnm_fn=None):
    """Append components with point mass posteriors at l, f

    The new components have no fitted priors, and contribute nothing to the
    ELBO other than through the fit, until they are updated.

    l - array-like [n, m]
    f - array-like [p, m]

    """
    n, p = self.shape
    if l.ndim != 2 or f.ndim != 2 or l.shape[0] != n or f.shape[0] != p or l.shape[1] != f.shape[1]:
      raise InvalidInput(f'shape mismatch (l, f): expected {(n, "m")}, {(p, "m")}, got {l.shape}, {f.shape}')
    if not np.isfinite(l).all() or not np.isfinite(f).all():
      raise InvalidInput('invalid value(s) in l, f')
    if ebnm_fn is None:
      ebnm_fn = self.ebnm_fn
    ebnm_l, ebnm_f = _split_ebnm(ebnm_fn)
    m = l.shape[1]
    self.l = np.hstack([self.l, l])
    self.f = np.hstack([self.f, f])
    self.l2 = np.hstack([self.l2, np.square(l)])
    self.f2 = np.hstack([self.f2, np.square(f)])
    self.gl.extend([None] * m)
    self.gf.extend([None] * m)
    self.ebnm_l.extend([ebnm_l] * m)
    self.ebnm_f.extend([ebnm_f] * m)
    self.kl_l = np.hstack([self.kl_l, np.zeros(m)])
    self.kl_f = np.hstack([self.kl_f, np.zeros(m)])
    self.fix_l = np.hstack([self.fix_l, np.full(m, fix_l, dtype=bool)])
    self.fix_f = np.hstack([self.fix_f, np.full(m, fix_f, dtype=bool)])
    return self.update_elbo()

  def remove(self, k):
    """Remove component k, renumbering the remaining components"""
    if not 0 <= k < self.k:
      raise InvalidInput(f'component {k} out of range for {self.k} components')
    for attr in ('l', 'f', 'l2', 'f2'):
      setattr(self, attr, np.delete(getattr(self, attr), k, axis=1))
    for attr in ('kl_l', 'kl_f', 'fix_l', 'fix_f'):
      setattr(self, attr, np.delete(getattr(self, attr), k))
    for attr in ('gl', 'gf', 'ebnm_l', 'ebnm_f'):
      del getattr(self, attr)[k]
    return self.update_tau()

  def ldf(self):
    """Return L, D, F such that LF' = L diag(D) F' and L, F have unit norm
columns

    """
    dl = np.linalg.norm(self.l, axis=0)
    df = np.linalg.norm(self.f, axis=0)
    with np.errstate(divide='ignore', invalid='ignore'):
      l = np.where(dl > 0, self.l / dl, 0)
      f = np.where(df > 0, self.f / df, 0)
    return l, dl * df, f

  def trace_frame(self):
    """Return the iteration trace as a DataFrame"""
    return pd.DataFrame(self.trace)

  def __repr__(self):
    n, p = self.shape
    return f'FitState(n={n}, p={p}, k={self.k}, var_type={self.var_type!r}, elbo={self.elbo}, status={self.status!r})'
