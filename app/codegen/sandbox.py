"""Run a compiled lesson component in an isolated duktape interpreter.

Each execution gets a fresh interpreter. The compiled body runs inside a function scope whose
only live capability is a small React-compatible runtime; the interpreter's host bridges
(`call_python`, `require`, `process`, `dukpy`) are removed from the global object before the body
is evaluated and `console` is a no-op. The component is rendered once into a JSON element tree.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Final

import dukpy

from app.codegen.compiler import CompiledUnit

logger = logging.getLogger(__name__)

MAX_RENDER_DEPTH: Final[int] = 200
NO_COMPONENT_MESSAGE: Final[str] = "No component exported"
EXECUTION_FAILED_MESSAGE: Final[str] = "Component execution failed"

# ES5 only: duktape implements ES5.1.
_UI_RUNTIME: Final[str] = """
var React = (function () {
  var FRAGMENT = '#fragment';
  function noop() {}

  function flattenChildren(value, out) {
    if (value instanceof Array) {
      for (var i = 0; i < value.length; i++) { flattenChildren(value[i], out); }
    } else if (value !== undefined && value !== null && value !== false && value !== true) {
      out.push(value);
    }
    return out;
  }

  function createElement(type, props) {
    var merged = {};
    var key;
    if (props) {
      for (key in props) {
        if (Object.prototype.hasOwnProperty.call(props, key)) { merged[key] = props[key]; }
      }
    }
    var children = [];
    for (var i = 2; i < arguments.length; i++) { flattenChildren(arguments[i], children); }
    if (arguments.length > 2) {
      merged.children = children.length === 1 ? children[0] : children;
    } else if (merged.children !== undefined) {
      children = flattenChildren(merged.children, []);
    }
    return { $$element: true, type: type, props: merged, children: children };
  }

  function Component(props) {
    this.props = props || {};
    this.state = {};
  }
  Component.prototype.isReactComponent = {};
  Component.prototype.setState = noop;
  Component.prototype.forceUpdate = noop;

  function createContext(defaultValue) {
    var context = { _currentValue: defaultValue };
    context.Provider = { $$provider: context };
    context.Consumer = { $$consumer: context };
    return context;
  }

  function __spread(target) {
    for (var i = 1; i < arguments.length; i++) {
      var source = arguments[i];
      if (source) {
        for (var key in source) {
          if (Object.prototype.hasOwnProperty.call(source, key)) { target[key] = source[key]; }
        }
      }
    }
    return target;
  }

  function serializeValue(value) {
    if (value === null || typeof value === 'string' || typeof value === 'number' || typeof value === 'boolean') {
      return value;
    }
    if (typeof value === 'function' || value === undefined || value.$$element) { return undefined; }
    try { return JSON.parse(JSON.stringify(value)); } catch (err) { return undefined; }
  }

  function serializeProps(props) {
    var out = {};
    for (var key in props) {
      if (!Object.prototype.hasOwnProperty.call(props, key)) { continue; }
      if (key === 'children' || key === 'key' || key === 'ref') { continue; }
      var value = serializeValue(props[key]);
      if (value !== undefined) { out[key] = value; }
    }
    return out;
  }

  function renderAll(nodes, depth) {
    var out = [];
    for (var i = 0; i < nodes.length; i++) {
      var rendered = render(nodes[i], depth);
      if (rendered !== null) { out.push(rendered); }
    }
    return out;
  }

  function render(node, depth) {
    if (depth > MAX_DEPTH) { throw new Error('Maximum render depth exceeded'); }
    if (node === null || node === undefined || typeof node === 'boolean') { return null; }
    if (typeof node === 'string' || typeof node === 'number') { return String(node); }
    if (node instanceof Array) {
      return { type: FRAGMENT, props: {}, children: renderAll(flattenChildren(node, []), depth + 1) };
    }
    if (!node.$$element) { throw new Error('Objects are not valid as a React child'); }

    var type = node.type;
    if (type === FRAGMENT) {
      return { type: FRAGMENT, props: {}, children: renderAll(node.children, depth + 1) };
    }
    if (typeof type === 'string') {
      return { type: type, props: serializeProps(node.props), children: renderAll(node.children, depth + 1) };
    }
    if (type && type.$$provider) {
      var context = type.$$provider;
      var previous = context._currentValue;
      context._currentValue = node.props.value;
      try {
        return { type: FRAGMENT, props: {}, children: renderAll(node.children, depth + 1) };
      } finally {
        context._currentValue = previous;
      }
    }
    if (type && type.$$consumer) {
      var renderProp = node.props.children;
      return render(typeof renderProp === 'function' ? renderProp(type.$$consumer._currentValue) : null, depth + 1);
    }
    if (typeof type === 'function') {
      if (type.prototype && type.prototype.isReactComponent) {
        var instance = new type(node.props);
        instance.props = node.props;
        if (instance.state === undefined) { instance.state = null; }
        return render(instance.render(), depth + 1);
      }
      return render(type(node.props), depth + 1);
    }
    throw new Error('Element type is invalid: ' + String(type));
  }

  return {
    Fragment: FRAGMENT,
    Component: Component,
    PureComponent: Component,
    createElement: createElement,
    createContext: createContext,
    __spread: __spread,
    useState: function (initial) { return [typeof initial === 'function' ? initial() : initial, noop]; },
    useReducer: function (reducer, initial, init) { return [typeof init === 'function' ? init(initial) : initial, noop]; },
    useEffect: noop,
    useLayoutEffect: noop,
    useMemo: function (factory) { return factory(); },
    useCallback: function (callback) { return callback; },
    useRef: function (initial) { return { current: initial }; },
    useContext: function (context) { return context ? context._currentValue : undefined; },
    useId: function () { return 'lesson-id'; },
    __render: function (node) { return render(node, 0); }
  };
})();
"""

_HARNESS: Final[str] = """
(function (source) {
  var globalObject = (function () { return this; })();
  var hostBridges = ['call_python', 'require', 'process', 'dukpy', 'module', 'exports'];
  for (var h = 0; h < hostBridges.length; h++) {
    try { delete globalObject[hostBridges[h]]; } catch (err) {}
    try { globalObject[hostBridges[h]] = undefined; } catch (err) {}
  }

  var MAX_DEPTH = %(max_depth)d;
  %(runtime)s
  React["default"] = React;

  function describe(err) {
    if (err && err.name && err.message !== undefined) { return err.name + ': ' + err.message; }
    return String(err);
  }

  var silentConsole = { log: function () {}, info: function () {}, warn: function () {}, error: function () {}, debug: function () {} };
  function scopedRequire(name) {
    if (name === 'react') { return React; }
    throw new Error('Module ' + name + ' is not available');
  }

  var prelude = 'var useState = React.useState, useEffect = React.useEffect, useMemo = React.useMemo, ' +
    'useCallback = React.useCallback, useRef = React.useRef, useReducer = React.useReducer, ' +
    'useContext = React.useContext, Fragment = React.Fragment;\\n';
  var epilogue = '\\nreturn typeof LessonComponent !== "undefined" ? LessonComponent : null;';

  var component;
  try {
    var factory = new Function('React', 'require', 'exports', 'module', 'call_python', 'process', 'dukpy', 'console',
      prelude + source + epilogue);
    var moduleObject = { exports: {} };
    component = factory(React, scopedRequire, moduleObject.exports, moduleObject, undefined, undefined, undefined, silentConsole);
  } catch (err) {
    return { ok: false, stage: 'evaluate', error: describe(err) };
  }

  var placeholder = false;
  if (component === null || component === undefined) {
    placeholder = true;
    component = function () { return React.createElement('div', null, '%(no_component)s'); };
  }

  try {
    return { ok: true, placeholder: placeholder, tree: React.__render(React.createElement(component, null)) };
  } catch (err) {
    return { ok: false, stage: 'render', error: describe(err) };
  }
})(dukpy.source)
""" % {"max_depth": MAX_RENDER_DEPTH, "runtime": _UI_RUNTIME, "no_component": NO_COMPONENT_MESSAGE}


class ExecutionError(Exception):
  """Raised when a compiled unit throws while being evaluated or rendered."""

  def __init__(self, message: str, *, stage: str) -> None:
    super().__init__(message)
    self.stage = stage


@dataclass(frozen=True)
class SandboxOutcome:
  """Element tree produced by one render; `placeholder` marks a missing canonical component."""

  tree: dict[str, Any]
  placeholder: bool = False


def fallback_tree(message: str = EXECUTION_FAILED_MESSAGE) -> dict[str, Any]:
  return {"type": "div", "props": {}, "children": [message]}


def execute(unit: CompiledUnit) -> SandboxOutcome:
  """Evaluate the compiled unit and render its component once."""
  interpreter = dukpy.JSInterpreter()
  try:
    result = interpreter.evaljs(_HARNESS, source=unit.body)
  except dukpy.JSRuntimeError as exc:
    raise ExecutionError(str(exc), stage="interpreter") from exc

  if not isinstance(result, dict):
    raise ExecutionError("Sandbox returned no result.", stage="interpreter")
  if not result.get("ok"):
    raise ExecutionError(str(result.get("error") or "Unknown execution error"), stage=str(result.get("stage") or "render"))

  tree = result.get("tree")
  if not isinstance(tree, dict):
    # A component returning a bare string or null still renders inside a wrapper.
    tree = {"type": "#fragment", "props": {}, "children": [] if tree is None else [tree]}
  return SandboxOutcome(tree=tree, placeholder=bool(result.get("placeholder")))
