from typing import Tuple, List, Dict

# (line number, block number, branch number)
BranchKey = Tuple[int, int, int]

# block number -> [ (source filename, line number), ... ]
BlockLines = Dict[int, List[Tuple[str, int]]]

# (found, hit)
FoundHit = Tuple[int, int]

#    (lines found, lines hit,
#     functions found, functions hit,
#     branches found, branches hit)
FoundHitTotals = Tuple[int, int, int, int, int, int]

# (source filename, line number, block number) -> (function ident, block)
BranchOwners = Dict[Tuple[str, int, int], Tuple[int, int]]
