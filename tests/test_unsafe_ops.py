# tests/test_unsafe_ops.py
"""Tests for the unsafe-operation heuristics."""

import pytest

from unsafe_paths.models import UnsafeOpKind
from unsafe_paths.unsafe_ops import (
    UnsafeOpDetector,
    is_known_unsafe_function,
    is_unsafe_method_name,
    strip_generics,
)
from unsafe_paths.syntax import parse_source
from tests.conftest import rust, visit_functions


OPS_SOURCE = """
static mut COUNTER: u32 = 0;

union Bits {
    i: u32,
    f: f32,
}

extern "C" {
    fn abort();
}

unsafe fn helper() {}

fn ops(v: &mut Vec<u8>, b: Bits) {
    unsafe {
        COUNTER += 1;
        let x = std::mem::transmute::<u32, f32>(1);
        v.set_len(0);
        let f = b.f;
        abort();
        helper();
        std::arch::asm!("nop");
    }
}
"""


def _kinds(source, name):
    functions, _, _ = visit_functions(source)
    return [op.kind for op in functions[name].unsafe_operations]


class TestNameMatching:

    @pytest.mark.parametrize("path", [
        "std::mem::transmute",
        "transmute",
        "foo::transmute",
        "ptr::copy",
        "core::ptr::read",
        "std::slice::from_raw_parts",
        "Box::from_raw",
        "Vec::<u8>::from_raw_parts",
    ])
    def test_known_unsafe(self, path):
        assert is_known_unsafe_function(path)

    @pytest.mark.parametrize("path", [
        "copy",
        "read",
        "reader::read",
        "std::fs::write",
        "",
    ])
    def test_not_known_unsafe(self, path):
        assert not is_known_unsafe_function(path)

    def test_strip_generics(self):
        assert strip_generics("Vec::<u8>::new") == "Vec::new"
        assert strip_generics("HashMap::<K, Vec<V>>::new") == "HashMap::new"
        assert strip_generics("::std::ptr::read") == "::std::ptr::read"

    def test_unsafe_method_names(self):
        assert is_unsafe_method_name("get_unchecked_mut")
        assert is_unsafe_method_name("as_ptr")
        assert is_unsafe_method_name("assume_init_read")
        assert not is_unsafe_method_name("push")


class TestPreScan:

    def test_collects_file_facts(self):
        detector = UnsafeOpDetector.for_tree(parse_source(rust(OPS_SOURCE)).root)
        assert detector.mutable_statics == frozenset({"COUNTER"})
        assert detector.union_types == frozenset({"Bits"})
        assert detector.foreign_functions == frozenset({"abort"})
        assert detector.local_unsafe_functions == frozenset({"helper"})


class TestClassification:

    def test_all_kinds_inside_unsafe_block(self):
        kinds = set(_kinds(OPS_SOURCE, "ops"))
        assert kinds >= {
            UnsafeOpKind.MUTABLE_STATIC_ACCESS,
            UnsafeOpKind.UNSAFE_FUNCTION_CALL,
            UnsafeOpKind.UNSAFE_METHOD_CALL,
            UnsafeOpKind.UNION_FIELD_ACCESS,
            UnsafeOpKind.OTHER,
            UnsafeOpKind.INLINE_ASM,
        }

    def test_raw_pointer_deref(self):
        source = """
        fn read(ptr: *const u8) -> u8 {
            unsafe { *ptr }
        }
        """
        assert _kinds(source, "read") == [UnsafeOpKind.RAW_POINTER_DEREF]

    def test_cast_and_offset_deref(self):
        source = """
        fn poke(base: usize, v: &mut [u8]) {
            unsafe {
                *(base as *mut u8) = 1;
                *v.as_mut_ptr().add(1) = 2;
            }
        }
        """
        kinds = _kinds(source, "poke")
        assert kinds.count(UnsafeOpKind.RAW_POINTER_DEREF) == 2

    def test_reborrow_is_not_reported(self):
        source = """
        fn borrow(ptr: *const u8) -> &'static u8 {
            unsafe { &*ptr }
        }
        """
        assert _kinds(source, "borrow") == []

    def test_nothing_outside_unsafe_code(self):
        source = """
        fn safe(v: &mut Vec<u8>) {
            v.set_len(0);
            let _ = std::mem::transmute::<u32, f32>(1);
        }
        """
        assert _kinds(source, "safe") == []

    def test_unsafe_fn_body_is_scanned(self):
        source = """
        unsafe fn raw(ptr: *const u8) -> u8 {
            *ptr
        }
        """
        assert _kinds(source, "raw") == [UnsafeOpKind.RAW_POINTER_DEREF]

    def test_duplicate_snippets_are_suppressed(self):
        source = """
        fn twice(ptr: *const u8) -> u8 {
            unsafe {
                let a = *ptr;
                let b = *ptr;
                a + b
            }
        }
        """
        assert _kinds(source, "twice") == [UnsafeOpKind.RAW_POINTER_DEREF]

    def test_static_declaration_is_not_an_access(self):
        source = """
        static mut STATE: u8 = 0;

        fn touch() {
            unsafe {
                let copy = STATE;
            }
        }
        """
        functions, _, _ = visit_functions(source)
        ops = functions["touch"].unsafe_operations
        assert [op.kind for op in ops] == [UnsafeOpKind.MUTABLE_STATIC_ACCESS]
        assert ops[0].snippet == "STATE"
