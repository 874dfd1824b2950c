# Copyright Red Hat
#
# tests/test_volmatch.py - volmatch package unit tests
#
# This file is part of the volmatch project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest
from unittest.mock import patch
import logging
import os

import volmatch
from volmatch import (
    VOLMATCH_DEBUG_ALL,
    VOLMATCH_DEBUG_COMPARE,
    VOLMATCH_DEBUG_ENTRIES,
    VOLMATCH_SUBSYSTEM_COMPARE,
    VOLMATCH_SUBSYSTEM_ENTRIES,
    SubsystemFilter,
    get_debug_mask,
    set_debug_mask,
    parse_debug_options,
    setup_debug_from_env,
)

log = logging.getLogger()


def _record(level, subsystem=None):
    record = logging.LogRecord("volmatch.test", level, __file__, 1, "msg", (), None)
    if subsystem:
        record.subsystem = subsystem
    return record


class VolmatchTests(unittest.TestCase):
    """Test volmatch module"""

    def setUp(self):
        log.debug("Preparing %s", self._testMethodName)

    def tearDown(self):
        log.debug("Tearing down %s", self._testMethodName)
        set_debug_mask(0)

    def test_version(self):
        self.assertTrue(volmatch.__version__)

    def test_set_debug_mask(self):
        set_debug_mask(VOLMATCH_DEBUG_COMPARE)
        self.assertEqual(get_debug_mask(), VOLMATCH_DEBUG_COMPARE)

    def test_set_debug_mask_all(self):
        set_debug_mask(VOLMATCH_DEBUG_ALL)
        self.assertEqual(get_debug_mask(), VOLMATCH_DEBUG_ALL)

    def test_set_debug_mask_bad(self):
        with self.assertRaises(ValueError):
            set_debug_mask(-1)
        with self.assertRaises(ValueError):
            set_debug_mask(VOLMATCH_DEBUG_ALL + 1)

    def test_parse_debug_options(self):
        self.assertEqual(
            parse_debug_options("compare,entries"),
            VOLMATCH_DEBUG_COMPARE | VOLMATCH_DEBUG_ENTRIES,
        )
        self.assertEqual(parse_debug_options("all"), VOLMATCH_DEBUG_ALL)
        self.assertEqual(parse_debug_options(""), 0)

    def test_parse_debug_options_bad(self):
        with self.assertRaises(ValueError):
            parse_debug_options("compare,nosuch")

    def test_setup_debug_from_env(self):
        with patch.dict(os.environ, {"VOLMATCH_DEBUG": "entries"}):
            setup_debug_from_env()
        self.assertEqual(get_debug_mask(), VOLMATCH_DEBUG_ENTRIES)

    def test_setup_debug_from_env_unset(self):
        with patch.dict(os.environ, {}, clear=True):
            setup_debug_from_env()
        self.assertEqual(get_debug_mask(), 0)

    def test_subsystem_filter(self):
        filt = SubsystemFilter("volmatch")
        filt.set_debug_subsystems([VOLMATCH_SUBSYSTEM_COMPARE])
        self.assertTrue(filt.filter(_record(logging.DEBUG, VOLMATCH_SUBSYSTEM_COMPARE)))
        self.assertFalse(filt.filter(_record(logging.DEBUG, VOLMATCH_SUBSYSTEM_ENTRIES)))
        self.assertTrue(filt.filter(_record(logging.DEBUG)))
        self.assertTrue(filt.filter(_record(logging.INFO, VOLMATCH_SUBSYSTEM_ENTRIES)))

    def test_error_hierarchy(self):
        self.assertTrue(issubclass(volmatch.InvalidSourceError, volmatch.VolmatchError))
        self.assertTrue(issubclass(volmatch.InvalidRuleError, volmatch.VolmatchError))
        self.assertTrue(issubclass(volmatch.InvalidRuleError, TypeError))
        self.assertTrue(issubclass(volmatch.UsageError, volmatch.VolmatchError))
        self.assertTrue(issubclass(volmatch.SnapshotError, volmatch.VolmatchError))
