"""Algorithms for solving Empirical Bayes Normal Means (EBNM)

EBNM is the problem of estimating g, where

x_i ~ N(theta_i, s_i^2)
theta_i ~ g(.)

and returning the posterior moments E[theta_i | x_i], E[theta_i^2 | x_i]
and the marginal log likelihood sum_i ln p(x_i | g, s_i). For g a
(mixture of) zero-centered normal(s), including point masses, the marginal
likelihood and posterior are analytic.

Every solver has the signature

fn(x, s, g=None, fix_g=False, sampler=False) -> EBNMResult

where g is a warm start (fix_g=False) or the prior to use as is (fix_g=True).
s_i = inf denotes an observation with no information.

We provide simple implementations under ebmf.ebnm. We additionally provide a
wrapper around ashr::ash in ebmf.ebnm.ashr (which requires rpy2, and an
explicit import).

"""
from .wrappers import *
