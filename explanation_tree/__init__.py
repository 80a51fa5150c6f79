"""
Explanation Tree: turns verified declarations into a layered explanation.

Takes a flat set of formally verified statements (leaves) and builds a tree
of progressively more abstract natural-language summaries, each parent
grounded only in its children, up to a single root.

Four-component pipeline:
  Dependency Graph (algo)  →  Child Grouping (algo)
    →  Summary Pipeline (LLM + critic)  →  Tree Builder (control loop)

Input:  leaf records (id, statement, complexity, prerequisite ids)
Output: explanation_tree.json (machine-consumable) + EXPLANATION_TREE.md
"""
