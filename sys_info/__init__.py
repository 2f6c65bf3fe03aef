"""
sys_info: restricted remote health reports over SSH.

Two halves share this package:

- the operator side (``dispatcher``, ``aliases``, ``credential``, ``cli``)
  resolves a host alias and sends one request over a restricted key;
- the agent side (``agent``, ``collectors``, ``report``, ``updater``) runs
  on the managed host as the key's forced command and prints a report.
"""

__version__ = "1.2.0"
