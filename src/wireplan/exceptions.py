class WirePlanError(Exception):
    """Represent a base class for all wireplan-specific failures.

    Catch this type when you want to handle any wireplan error path without
    matching each concrete exception class individually.
    """


class WirePlanDeclarationError(WirePlanError):
    """Signal a malformed binding or graph declaration.

    Raised while declarations are registered or canonicalized, for example
    when a key annotation carries two qualifiers, an alias does not have exactly
    one target, or a graph names a parent that was never declared.

    Typical fixes include declaring qualifiers with a single ``Named`` marker,
    giving every ``binds`` declaration one target, and declaring parent graphs
    before their children.
    """


class WirePlanDuplicateBindingError(WirePlanDeclarationError):
    """Signal that two declarations produce the same binding key.

    Raised by the binding graph builder when a graph declares two
    non-multibinding bindings for one key, or when two constructor-injected
    classes claim the same key.

    Typical fixes include removing one of the declarations or qualifying one of
    them with ``Named(...)``.
    """


class WirePlanMissingBindingError(WirePlanDeclarationError):
    """Signal that a requested key has no binding.

    Raised by the binding graph builder when a dependency resolves neither to a
    local declaration, an ancestor graph's slot, nor a constructor-injected
    class, and the dependency has no default.

    Typical fixes include declaring a provider for the key, checking that the
    qualifier matches the declared one, or marking the dependency as having a
    default.
    """


class WirePlanDuplicateMapKeyError(WirePlanDeclarationError):
    """Signal that two map multibinding contributions share a map key.

    Raised by the multibinding aggregator. The message names both contributors.
    """


class WirePlanEmptyMultibindingError(WirePlanDeclarationError):
    """Signal an empty multibinding declared with ``allow_empty=False``.

    Typical fixes include contributing at least one element or allowing the
    collection to be empty.
    """


class WirePlanScopeMismatchError(WirePlanDeclarationError):
    """Signal a scoped binding that no graph in the hierarchy can own.

    Raised by the binding graph builder when a binding's scope is declared
    neither by the graph that needs it nor by any of its ancestors.

    Typical fixes include adding the scope to the graph declaration or
    removing the scope from the binding.
    """


class WirePlanDependencyCycleError(WirePlanError):
    """Signal a dependency cycle that cannot be broken.

    Raised by the deferral planner when every edge along a cycle is a direct
    dependency that does not allow deferral. The message lists the full cycle
    path.

    Typical fixes include injecting one of the dependencies as ``Provider[T]``
    or ``Lazy[T]``, or declaring the dependency with ``allow_deferral=True``.
    """


class WirePlanInternalError(WirePlanError):
    """Signal a broken engine invariant.

    Raised for corrupt allocator stack state or a direct dependency cycle that
    survived deferral planning. This is never caused by user declarations and
    aborts the current compilation.
    """


class WirePlanAbortProcessing(WirePlanError):
    """Signal that fatal errors were already reported for the current graph.

    The engine catches this signal, skips the graph and continues with the
    remaining graphs.
    """
