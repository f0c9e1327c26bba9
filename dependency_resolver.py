from typing import Dict, List, Set

from out_types import Constant, DependencyCycleError

CYCLE_PERMIT = "permit"
CYCLE_EXCLUDE = "exclude"
CYCLE_ERROR = "error"
CYCLE_POLICIES = (CYCLE_PERMIT, CYCLE_EXCLUDE, CYCLE_ERROR)


class DependencyResolver:
    """
    Orders constants so that every dependency is emitted before its dependents.

    Constants that reference a name missing from the input are excluded, and so
    is everything that depends on them, directly or transitively. What happens
    to constants on a reference cycle is decided by the cycle policy:

    - permit: the cycle is kept, a revisit of an in-progress node counts as
      satisfied, so the order around the cycle is not verified
    - exclude: every constant on a cycle and its dependents are excluded
    - error: DependencyCycleError is raised
    """

    def __init__(self, cycles: str = CYCLE_PERMIT, verbose: bool = False):
        if cycles not in CYCLE_POLICIES:
            raise ValueError(f"unknown cycle policy: {cycles}")
        self.cycles = cycles
        self.verbose = verbose
        self.excluded: List[str] = []
        self.cyclic: List[str] = []

    def _debug(self, msg: str):
        if self.verbose:
            print(f"DEBUG: {msg}")

    def _find_cycles(self, by_name: Dict[str, Constant], skipped: Set[str]) -> List[str]:
        """Names that sit on a reference cycle among the non-excluded constants (Tarjan SCC)."""
        index: Dict[str, int] = {}
        low: Dict[str, int] = {}
        stack: List[str] = []
        on_stack: Set[str] = set()
        on_cycle: Set[str] = set()
        counter = 0

        def edges(name: str) -> List[str]:
            return [d for d in by_name[name].dependencies if d in by_name and d not in skipped]

        for root in by_name:
            if root in skipped or root in index:
                continue
            # iterative to stay clear of the recursion limit on long chains
            work = [(root, iter(edges(root)))]
            index[root] = low[root] = counter
            counter += 1
            stack.append(root)
            on_stack.add(root)
            while work:
                node, it = work[-1]
                advanced = False
                for dep in it:
                    if dep not in index:
                        index[dep] = low[dep] = counter
                        counter += 1
                        stack.append(dep)
                        on_stack.add(dep)
                        work.append((dep, iter(edges(dep))))
                        advanced = True
                        break
                    if dep in on_stack:
                        low[node] = min(low[node], index[dep])
                if advanced:
                    continue
                work.pop()
                if work:
                    parent = work[-1][0]
                    low[parent] = min(low[parent], low[node])
                if low[node] == index[node]:
                    component = []
                    while True:
                        member = stack.pop()
                        on_stack.discard(member)
                        component.append(member)
                        if member == node:
                            break
                    if len(component) > 1 or node in by_name[node].dependencies:
                        on_cycle.update(component)

        return [name for name in by_name if name in on_cycle]

    def _cascade(self, constants: List[Constant], skipped: Set[str]):
        changed = True
        while changed:
            changed = False
            for c in constants:
                if c.name in skipped:
                    continue
                for dep in c.dependencies:
                    if dep in skipped:
                        skipped.add(c.name)
                        changed = True
                        break

    def resolve(self, constants: List[Constant]) -> List[Constant]:
        by_name: Dict[str, Constant] = {}
        for c in constants:
            by_name.setdefault(c.name, c)

        skipped: Set[str] = set()
        # First pass: constants with missing dependencies
        for c in constants:
            for dep in c.dependencies:
                if dep not in by_name:
                    self._debug(f"Excluding {c.name}: unknown name {dep}")
                    skipped.add(c.name)
                    break
        self._cascade(constants, skipped)

        self.cyclic = self._find_cycles(by_name, skipped)
        if self.cyclic:
            if self.cycles == CYCLE_ERROR:
                raise DependencyCycleError(
                    f"constants reference each other in a cycle: {', '.join(self.cyclic)}"
                )
            if self.cycles == CYCLE_EXCLUDE:
                self._debug(f"Excluding cyclic constants: {', '.join(self.cyclic)}")
                skipped.update(self.cyclic)
                self._cascade(constants, skipped)

        ordered: List[Constant] = []
        visited: Set[str] = set()
        in_progress: Set[str] = set()

        def visit(name: str):
            if name in visited or name in in_progress or name in skipped:
                return
            const = by_name.get(name)
            if const is None:
                return
            in_progress.add(name)
            for dep in const.dependencies:
                if dep in by_name:
                    visit(dep)
            in_progress.discard(name)
            visited.add(name)
            ordered.append(const)

        for c in constants:
            if c.name not in skipped:
                visit(c.name)

        self.excluded = [c.name for c in constants if c.name in skipped]
        return ordered


def topological_sort(constants: List[Constant], cycles: str = CYCLE_PERMIT) -> List[Constant]:
    return DependencyResolver(cycles=cycles).resolve(constants)
