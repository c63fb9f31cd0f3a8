"""
The apply engine: converge the live objects to the desired set of objects.

The desired objects are applied on behalf of an owner (usually the object
being reconciled). The engine creates the absent objects, patches the changed
ones with three-way patches, and prunes the owned objects that are not desired
anymore. The owned objects are found by their ownership hash label with one
listing per resource type, not by individual reads.

The engine is not transactional: every object is processed independently,
the errors are accumulated, and the already applied objects stay applied
even if the others fail. The callers retry the whole apply later.

Usage::

    await Apply(store).with_owner_sub_context('db').apply(owner, secret, deployment)
    await Apply(store).ensure(namespace)
"""
import copy
import logging
from collections.abc import Coroutine, Mapping, MutableMapping
from typing import Any

from steward._cogs.clients import errors, stores
from steward._cogs.configs import configuration
from steward._cogs.helpers import typedefs
from steward._cogs.structs import bodies, dicts, references, selectors
from steward._core.apply import comparing, objectset, ownership, replacing, snapshots

logger = logging.getLogger(__name__)

ObjectsByKey = MutableMapping[references.ObjectKey, bodies.Body]


class ApplyError(Exception):
    """ A failure to apply one or more objects. """


class OwnershipConflictError(ApplyError):
    """ An object to create exists already and is owned by someone else. """


class AggregateError(ApplyError):
    """ Several independent failures of one apply, all reported at once. """

    def __init__(self, errors: list[Exception]) -> None:
        flat: list[Exception] = []
        for error in errors:
            flat.extend(error.errors if isinstance(error, AggregateError) else [error])
        super().__init__('; '.join(str(error) for error in flat))
        self.errors = flat


class ReplaceRequired(Exception):
    """ Internal signal: the object cannot be patched, only re-created. """


class Apply:
    """
    The apply engine with its options.

    The options are set with the ``with_…`` methods, each returning
    a modified copy, so the engine can be prepared once and specialised
    for every use without affecting other users.
    """

    def __init__(
            self,
            store: stores.ObjectStore,
            *,
            settings: configuration.OperatorSettings | None = None,
            logger: typedefs.Logger = logger,
    ) -> None:
        super().__init__()
        self.store = store
        self.settings = settings if settings is not None else configuration.OperatorSettings()
        self.logger = logger
        self.sub_context = ''
        self.prune_gvks: frozenset[references.GVK] = frozenset()
        self.no_prune = False
        self.default_namespace = ''
        self.lister_namespace = ''
        self.allowed_transitions: frozenset[str] = frozenset()

    def _replace(self, **kwargs: Any) -> "Apply":
        clone = copy.copy(self)
        for name, value in kwargs.items():
            setattr(clone, name, value)
        return clone

    def with_owner_sub_context(self, sub_context: str) -> "Apply":
        return self._replace(sub_context=sub_context)

    def with_prune_gvks(self, *gvks: references.GVK) -> "Apply":
        """ Also prune the objects of these types, even if none are desired now. """
        return self._replace(prune_gvks=self.prune_gvks | frozenset(gvks))

    def with_no_prune(self) -> "Apply":
        return self._replace(no_prune=True)

    def with_namespace(self, namespace: str) -> "Apply":
        """ Restrict the listing of the owned objects to one namespace, and default to it. """
        return self._replace(lister_namespace=namespace, default_namespace=namespace)

    def with_default_namespace(self, namespace: str) -> "Apply":
        return self._replace(default_namespace=namespace)

    def with_allow_owner_transition(self, *transitions: str) -> "Apply":
        """
        Allow taking over the objects of the same owner from other sub-contexts.

        The transitions are written as ``"old-sub-context => new-sub-context"``.
        """
        return self._replace(allowed_transitions=self.allowed_transitions | frozenset(transitions))

    def with_settings(self, settings: configuration.OperatorSettings) -> "Apply":
        return self._replace(settings=settings)

    def with_logger(self, logger: typedefs.Logger) -> "Apply":
        return self._replace(logger=logger)

    async def apply(self, owner: Mapping[str, Any] | None, *objs: bodies.Body | None) -> None:
        """
        Apply the objects on behalf of the owner; prune the owned objects not listed.

        The given objects are not modified: all changes are done on their copies.
        """
        await self._apply(ownership.resolve(owner, self.sub_context), objectset.ObjectSet(*objs),
                          ensure=False)

    async def ensure(self, *objs: bodies.Body | None) -> None:
        """
        Create or update the objects without any ownership; never prune anything.

        Unlike :meth:`apply`, the given objects are modified in place:
        they are updated with the objects as stored (e.g. with their UIDs).
        """
        await self._apply(ownership.Unowned(), objectset.ObjectSet(*objs), ensure=True)

    async def _apply(
            self,
            owner: ownership.Ownership,
            desired: objectset.ObjectSet,
            *,
            ensure: bool,
    ) -> None:
        keys = ownership.AnnotationKeys(self.settings.apply.prefix)
        gvk_order = desired.gvk_order(*self.prune_gvks)
        injected = self._inject(desired, owner, keys, clone=not ensure)
        selector = owner.selector(keys)

        errs: list[Exception] = []
        for gvk in gvk_order:
            try:
                await self._process(gvk, injected, owner=owner, keys=keys, selector=selector,
                                    ensure=ensure)
            except Exception as e:
                errs.append(e)
        if errs:
            raise AggregateError(errs)

    def _inject(
            self,
            desired: objectset.ObjectSet,
            owner: ownership.Ownership,
            keys: ownership.AnnotationKeys,
            *,
            clone: bool,
    ) -> objectset.ObjectSet:
        labels = owner.labels(keys)
        annotations = owner.annotations(keys)
        result = objectset.ObjectSet()
        for gvk in desired.gvks():
            for body in desired.objects(gvk).values():
                if clone:
                    body = copy.deepcopy(body)
                bodies.set_labels(body, labels)
                ((body.get('metadata') or {}).get('annotations') or {}).pop(keys.applied, None)
                bodies.set_annotations(body, annotations)
                result.add(body)
        return result

    async def _process(
            self,
            gvk: references.GVK,
            desired: objectset.ObjectSet,
            *,
            owner: ownership.Ownership,
            keys: ownership.AnnotationKeys,
            selector: selectors.LabelSelector | None,
            ensure: bool,
    ) -> None:
        debug_id = owner.debug_id
        objs: ObjectsByKey = dict(desired.objects(gvk))
        namespaced = await self.store.is_namespaced(gvk)

        if isinstance(owner, ownership.Owned) and owner.owner is not None:
            objs = await self._assign_owner_references(gvk, objs, namespaced=namespaced,
                                                       owner=owner.owner)
        objs = self._adjust_namespaces(objs) if namespaced else self._clear_namespaces(objs)

        try:
            existing = await self._list_existing(gvk, selector, objs)
        except Exception as e:
            raise ApplyError(f"Failed to list {gvk} for {debug_id!r}: {e}") from e

        to_create, to_delete, to_update = compare_sets(existing, objs, keys)
        to_delete = self._filter_cross_version(desired, gvk, to_delete, owner)
        recreate: list[references.ObjectKey] = []
        errs: list[Exception] = []

        async def create(key: references.ObjectKey) -> None:
            body = snapshots.prepare_for_create(gvk, objs[key], keys, clone=not ensure)
            try:
                created = await self.store.create(body)
            except errors.APIAlreadyExistsError as e:
                # Taking over an object that was not created by us (or was, but in the past).
                try:
                    found = await self.store.get(references.Uncached(gvk), key.namespace, key.name)
                except errors.APIError:
                    raise ApplyError(f"Failed to create {gvk} {key} for {debug_id!r}: {e}") from e
                found_hash = bodies.get_labels(found).get(keys.hash, '')
                if (found_hash and found_hash != bodies.get_labels(body).get(keys.hash, '') and
                        not ownership.is_assigning_sub_context(found, body, keys) and
                        not ownership.is_allow_owner_transition(found, body, keys,
                                                                self.allowed_transitions)):
                    annotations = bodies.get_annotations(found)
                    raise OwnershipConflictError(
                        f"Failed to update the existing owned object {gvk} {key} for {debug_id!r}:"
                        f" old sub-context {annotations.get(keys.sub_context, '')!r}"
                        f" gvk {annotations.get(keys.owner_gvk, '')!r}"
                        f" namespace {annotations.get(keys.owner_namespace, '')!r}"
                        f" name {annotations.get(keys.owner_name, '')!r}") from e
                if should(body, keys.update):
                    to_update.append(key)
                existing[key] = found
            except errors.APIError as e:
                raise ApplyError(f"Failed to create {gvk} {key} for {debug_id!r}: {e}") from e
            else:
                if ensure:
                    dicts.replace_contents(objs[key], created)
                self.logger.debug(f"Created {gvk} {key} for {debug_id!r}.")

        async def update(key: references.ObjectKey) -> None:
            try:
                await self._update(gvk, existing[key], objs[key], keys=keys, debug_id=debug_id,
                                   ensure=ensure)
            except ReplaceRequired:
                if should(existing[key], keys.prune) and should(existing[key], keys.create):
                    to_delete.append(key)
                    recreate.append(key)
            except errors.APIError as e:
                raise ApplyError(f"Failed to update {gvk} {key} for {debug_id!r}: {e}") from e

        async def delete(key: references.ObjectKey) -> None:
            try:
                await self.store.delete(gvk, key.namespace, key.name)
            except errors.APIError as e:
                raise ApplyError(f"Failed to delete {gvk} {key} for {debug_id!r}: {e}") from e
            self.logger.debug(f"Deleted {gvk} {key} for {debug_id!r}.")

        for key in to_create:
            await _collect(errs, create(key))
        for key in to_update:
            await _collect(errs, update(key))
        if not self.no_prune:
            for key in to_delete:
                await _collect(errs, delete(key))
        for key in recreate:
            await _collect(errs, create(key))
        if errs:
            raise AggregateError(errs)

    async def _update(
            self,
            gvk: references.GVK,
            current: bodies.Body,
            desired: bodies.Body,
            *,
            keys: ownership.AnnotationKeys,
            debug_id: str,
            ensure: bool,
    ) -> None:
        key = references.ObjectKey.for_body(current)
        original = snapshots.get_original(gvk, current, keys)
        modified = snapshots.prepare_for_create(gvk, desired, keys)
        patch_type, patch = comparing.create_patch(gvk, original, modified, current)
        patch = comparing.sanitize_patch(patch, keys) if patch else {}
        if not patch:
            if ensure:
                dicts.replace_contents(desired, current)
            self.logger.debug(f"No changes in {gvk} {key} for {debug_id!r}.")
            return

        old = original if original is not None else current
        if replacing.needs_replace(gvk, old, modified, keys):
            self.logger.debug(f"Replacing {gvk} {key} for {debug_id!r}.")
            raise ReplaceRequired()

        self.logger.debug(f"Updating {gvk} {key} for {debug_id!r} with {patch_type.value}: {patch!r}")
        patched = await self.store.patch(gvk, key.namespace, key.name, patch, patch_type)
        if ensure:
            dicts.replace_contents(desired, patched)

    async def _assign_owner_references(
            self,
            gvk: references.GVK,
            objs: ObjectsByKey,
            *,
            namespaced: bool,
            owner: Mapping[str, Any],
    ) -> ObjectsByKey:
        """
        Mark the objects as owned for the garbage collection of the cluster.

        The owner references cannot cross the namespace boundaries:
        a namespaced owner owns only the objects in its namespace (the objects
        without the namespace are put there), a cluster-scoped owner owns all.
        """
        owner_namespaced = await self.store.is_namespaced(references.GVK.for_body(owner))
        owner_namespace = bodies.get_namespace(owner)
        owner_uid = bodies.get_uid(owner)

        result: ObjectsByKey = {}
        for key, body in objs.items():
            if owner_namespaced and not namespaced:
                result[key] = body
                continue
            if namespaced and key.namespace and owner_namespaced and key.namespace != owner_namespace:
                result[key] = body
                continue

            body = copy.deepcopy(body)
            if namespaced and not key.namespace:
                bodies.set_namespace(body, owner_namespace)
                key = references.ObjectKey(namespace=owner_namespace, name=key.name)

            refs = bodies.get_owner_references(body)
            if owner_uid and all(ref.get('uid') != owner_uid for ref in refs):
                body['metadata']['ownerReferences'] = refs + [bodies.build_owner_reference(owner)]

            result[key] = body
        return result

    def _adjust_namespaces(self, objs: ObjectsByKey) -> ObjectsByKey:
        result: ObjectsByKey = {}
        for key, body in objs.items():
            if not key.namespace:
                bodies.set_namespace(body, self.default_namespace)
                key = references.ObjectKey(namespace=self.default_namespace, name=key.name)
            result[key] = body
        return result

    def _clear_namespaces(self, objs: ObjectsByKey) -> ObjectsByKey:
        result: ObjectsByKey = {}
        for key, body in objs.items():
            if key.namespace:
                bodies.set_namespace(body, '')
                key = references.ObjectKey(namespace='', name=key.name)
            result[key] = body
        return result

    async def _list_existing(
            self,
            gvk: references.GVK,
            selector: selectors.LabelSelector | None,
            objs: ObjectsByKey,
    ) -> ObjectsByKey:
        if selector is not None:
            items = await self.store.list(gvk, namespace=self.lister_namespace, label_selector=selector)
            return {references.ObjectKey.for_body(item): item for item in items}

        # Without an owner, nothing can be listed as owned: check the desired objects only.
        result: ObjectsByKey = {}
        for key in objs:
            try:
                result[key] = await self.store.get(gvk, key.namespace, key.name)
            except errors.APINotFoundError:
                continue
        return result

    def _filter_cross_version(
            self,
            desired: objectset.ObjectSet,
            gvk: references.GVK,
            keys: list[references.ObjectKey],
            owner: ownership.Ownership,
    ) -> list[references.ObjectKey]:
        """
        Keep the objects desired under other versions of the same kind from deletion.

        The desired objects are indexed by the keys as given, i.e. possibly
        without the namespaces, which are defaulted later to either
        the default namespace or the owner's namespace.
        """
        defaulted = {self.default_namespace}
        if isinstance(owner, ownership.Owned) and owner.owner is not None:
            defaulted.add(bodies.get_namespace(owner.owner))

        result: list[references.ObjectKey] = []
        for key in keys:
            if desired.contains(gvk.group_kind, key):
                continue
            if key.namespace in defaulted and desired.contains(gvk.group_kind, references.ObjectKey('', key.name)):
                continue
            result.append(key)
        return result


def should(body: Mapping[str, Any], annotation: str) -> bool:
    return bodies.get_annotations(body).get(annotation) != 'false'


def compare_sets(
        existing: Mapping[references.ObjectKey, bodies.Body],
        desired: Mapping[references.ObjectKey, bodies.Body],
        keys: ownership.AnnotationKeys,
) -> tuple[list[references.ObjectKey], list[references.ObjectKey], list[references.ObjectKey]]:
    """
    Split the keys into the ones to create, to delete, and to update.

    Every object can opt out of any of the operations with the annotations.
    The objects being deleted are not deleted again.
    """
    to_create = [key for key, body in desired.items()
                 if key not in existing and should(body, keys.create)]
    to_update = [key for key, body in desired.items()
                 if key in existing and should(body, keys.update)]
    to_delete = [key for key, body in existing.items()
                 if key not in desired and should(body, keys.prune) and not bodies.is_deleting(body)]
    return sorted(to_create, key=str), sorted(to_delete, key=str), sorted(to_update, key=str)


async def _collect(errs: list[Exception], coro: Coroutine[Any, Any, None]) -> None:
    try:
        await coro
    except Exception as e:
        errs.append(e)
