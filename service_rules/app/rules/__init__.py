"""
Rules engine package.

Defines the rule model and evaluation pipeline used to assign customers
and rates to cargo records. Conditions compare one record field against
a text value; a rule combines its conditions under a single AND/OR mode;
rules are evaluated in ascending priority and the first match wins.

Modules of interest:
- fields: Closed set of cargo fields and their typed accessors.
- models: Data classes for rules, conditions, outcomes and decisions.
- conditions: Single-condition evaluation; never raises.
- matcher: Rule-level AND/OR matching.
- resolver: Priority ordering and first-match-wins resolution.
"""
